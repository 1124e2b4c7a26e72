# db_syncer/schema/models.py
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class TableSchema:
    """Analyzed structure of a table"""
    table_name: str
    primary_key: Optional[str]
    update_column: Optional[str]
    columns: List[str] = field(default_factory=list)
    analyzed_at: str = ''
    db_type: str = 'generic'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TableSchema':
        return cls(
            table_name=data['table_name'],
            primary_key=data.get('primary_key'),
            update_column=data.get('update_column'),
            columns=list(data.get('columns', [])),
            analyzed_at=data.get('analyzed_at', ''),
            db_type=data.get('db_type', 'generic')
        )
