# plugins/core_codepage/config.py

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field

from plugins.core_records.config import parse_field_id_mapping


class CodepageSettings(BaseModel):
    codepage_table_id: Optional[str] = Field(default=None, description="Collection holding codepages.")
    version_table_id: Optional[str] = Field(default=None, description="Collection holding version snapshots.")
    codepage_field_ids: Dict[str, int] = Field(default_factory=dict)
    version_field_ids: Dict[str, int] = Field(default_factory=dict)


def load_codepage_settings() -> CodepageSettings:
    return CodepageSettings(
        codepage_table_id=os.getenv("CODEPAGE_TABLE_ID") or None,
        version_table_id=os.getenv("CODEPAGE_VERSION_TABLE_ID") or None,
        codepage_field_ids=parse_field_id_mapping(os.getenv("CODEPAGE_FIELD_IDS"), "CODEPAGE_FIELD_IDS"),
        version_field_ids=parse_field_id_mapping(
            os.getenv("CODEPAGE_VERSION_FIELD_IDS"), "CODEPAGE_VERSION_FIELD_IDS"
        ),
    )
