"""
Pydantic schema for the datamart JSON envelope
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DatamartResponse(BaseModel):
    """
    Envelope returned for every datamart section query.

    results rows are kept as raw dictionaries: a key that is missing is
    distinguished from a key whose value is null.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    report_section: Optional[str] = Field(None, alias="reportSection")
    report_sections: List[str] = Field(default_factory=list, alias="reportSections")
    stats: Dict[str, Any] = Field(default_factory=dict)
    results: Optional[List[Dict[str, Any]]] = None
    message: Optional[str] = None

    def stat(self, name: str) -> Optional[int]:
        """Read a stats counter; the service publishes keys with a trailing colon."""
        for key in (f"{name}:", name):
            if key in self.stats:
                try:
                    return int(self.stats[key])
                except (TypeError, ValueError):
                    return None
        return None

    def row_cap_reached(self) -> bool:
        """The service returns one row more than the allowed count when truncating."""
        returned = self.stat("returnedRows")
        allowed = self.stat("userAllowedRows")
        return returned is not None and allowed is not None and returned == allowed + 1
