"""
mgnrega_shared — configuration, storage schema and date helpers shared by the
MGNREGA pipeline and its trigger API.

Usage:
    from mgnrega_shared.config import settings
    from mgnrega_shared.db import get_engine, create_db_engine
    from mgnrega_shared.schema import raw_data, district_performance, state_averages
    from mgnrega_shared.time_utils import canonical_month, fiscal_month_ordinal
"""

__version__ = "0.1.0"
