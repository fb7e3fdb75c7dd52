"""Application services - sync, exclusions, stats and instance management."""

from peekstash.application.services.entity_image_count_service import EntityImageCountService
from peekstash.application.services.exclusion_service import (
    ExclusionComputationService,
    ExclusionRecord,
)
from peekstash.application.services.hidden_entity_service import UserHiddenEntityService
from peekstash.application.services.image_gallery_inheritance_service import (
    ImageGalleryInheritanceService,
)
from peekstash.application.services.ranking_service import (
    ComputedRanking,
    RankingComputeService,
    compute_percentile_ranks,
)
from peekstash.application.services.recommendation_scoring_service import (
    RecommendationScoringService,
)

# Hey future me - the registry is process-wide state (one httpx client per instance).
# Build ONE manager in the app lifespan and hand it to every service that needs it.
from peekstash.application.services.stash_instance_manager import (
    StashInstanceConfig,
    StashInstanceManager,
)
from peekstash.application.services.stash_instance_service import (
    StashInstanceService,
    disambiguate_entity_names,
    migrate_env_instance,
)
from peekstash.application.services.stash_sync_service import StashSyncService, SyncResult
from peekstash.application.services.tag_inheritance_service import SceneTagInheritanceService
from peekstash.application.services.user_service import UserService
from peekstash.application.services.user_stats_service import UserStatsService

__all__ = [
    "ComputedRanking",
    "EntityImageCountService",
    "ExclusionComputationService",
    "ExclusionRecord",
    "ImageGalleryInheritanceService",
    "RankingComputeService",
    "RecommendationScoringService",
    "SceneTagInheritanceService",
    "StashInstanceConfig",
    "StashInstanceManager",
    "StashInstanceService",
    "StashSyncService",
    "SyncResult",
    "UserHiddenEntityService",
    "UserService",
    "UserStatsService",
    "compute_percentile_ranks",
    "disambiguate_entity_names",
    "migrate_env_instance",
]
