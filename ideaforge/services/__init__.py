from ideaforge.services.store import DurableStore, InMemoryStore, SqlAlchemyStore
from ideaforge.services.storage import BlobStore
from ideaforge.services.llm import LLMService
from ideaforge.services.image_service import ImageService
from ideaforge.services.generator import CandidateGenerator, LLMCandidateGenerator, MockCandidateGenerator
from ideaforge.services.sessions import SessionService
from ideaforge.services.spark import SparkService
from ideaforge.services.mutations import MutationService
from ideaforge.services.features import FeatureExpansionService
from ideaforge.services.synthesis import SynthesisService
from ideaforge.services.refinement import RefinementService
from ideaforge.services.visuals import VisualService
from ideaforge.services.personality import PersonalityService
from ideaforge.services.gallery import GalleryService

__all__ = [
    "DurableStore",
    "InMemoryStore",
    "SqlAlchemyStore",
    "BlobStore",
    "LLMService",
    "ImageService",
    "CandidateGenerator",
    "LLMCandidateGenerator",
    "MockCandidateGenerator",
    "SessionService",
    "SparkService",
    "MutationService",
    "FeatureExpansionService",
    "SynthesisService",
    "RefinementService",
    "VisualService",
    "PersonalityService",
    "GalleryService",
]
