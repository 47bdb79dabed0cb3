# ticketing/schemas/common.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class _Base(BaseModel):
    """
    - from_attributes: 允许 ORM 对象直接序列化
    - extra="ignore": 忽略冗余字段
    """

    model_config = ConfigDict(from_attributes=True, extra="ignore", populate_by_name=True)
