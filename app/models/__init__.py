from .organization import Organization
from .team import Team
from .user import User
from .checkin import Checkin
from .shoutout import Shoutout
from .win import Win
from .vacation import Vacation
from .aggregate_bucket import AggregateBucket
from .aggregation_watermark import AggregationWatermark
from .backfill_run import BackfillRun, BackfillStatus

__all__ = [
    "Organization",
    "Team",
    "User",
    "Checkin",
    "Shoutout",
    "Win",
    "Vacation",
    "AggregateBucket",
    "AggregationWatermark",
    "BackfillRun",
    "BackfillStatus",
]
