"""Pipeline stages after discovery: analysis, rejection and expiry."""

from job_discovery.engines.pipeline.lifecycle import (
    ALLOWED_TRANSITIONS,
    InvalidTransitionError,
    JobAnalyzer,
    JobOfferNotFoundError,
    MatchAnalysis,
    MatchScorer,
    RoleFitScorer,
    can_transition,
    register_pipeline_handlers,
    reject_job_offer,
    sweep_expired_offers,
    transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "JobAnalyzer",
    "JobOfferNotFoundError",
    "MatchAnalysis",
    "MatchScorer",
    "RoleFitScorer",
    "can_transition",
    "register_pipeline_handlers",
    "reject_job_offer",
    "sweep_expired_offers",
    "transition",
]
