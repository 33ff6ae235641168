from ideaforge.routers.sessions import router as sessions_router
from ideaforge.routers.spark import router as spark_router
from ideaforge.routers.mutations import router as mutations_router
from ideaforge.routers.features import router as features_router
from ideaforge.routers.synthesis import router as synthesis_router
from ideaforge.routers.refinement import router as refinement_router
from ideaforge.routers.visuals import router as visuals_router
from ideaforge.routers.personality import router as personality_router
from ideaforge.routers.gallery import router as gallery_router

__all__ = [
    "sessions_router",
    "spark_router",
    "mutations_router",
    "features_router",
    "synthesis_router",
    "refinement_router",
    "visuals_router",
    "personality_router",
    "gallery_router",
]
