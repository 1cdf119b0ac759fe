from fee_settlement.schemas.common.base import BaseResponseSchema, BaseSchema, quantize_amount
from fee_settlement.schemas.common.enums import *  # noqa: F401,F403
