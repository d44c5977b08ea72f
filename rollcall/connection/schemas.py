from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from rollcall.core.enums import ConnectionMode, Reachability


class ProbeResult(BaseModel):
    """Outcome of one layer of the diagnosis."""

    layer: str
    status: Reachability
    elapsed_ms: int = 0
    detail: Optional[str] = None


class Diagnosis(BaseModel):
    """Detected connectivity issues with matching recommendations, for the status UI."""

    issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    probes: List[ProbeResult] = Field(default_factory=list)
    # Layer that stopped the diagnosis; None when every layer passed
    failed_layer: Optional[str] = None
    mode: ConnectionMode

    @property
    def healthy(self) -> bool:
        return not self.issues

    @property
    def details(self) -> Dict[str, str]:
        return {p.layer: p.status.value for p in self.probes}
