from typing import Annotated

from fastapi import Query

LimitParam = Annotated[int, Query(ge=1, le=100, description="Maximum number of items to return")]
OffsetParam = Annotated[int, Query(ge=0, description="Number of items to skip")]
