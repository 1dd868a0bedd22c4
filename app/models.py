from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr
from typing import Any, Dict, Optional, Union

class ClaimValidationRequest(BaseModel):
    """
    Body of POST /claim/validate.

    Only JSON types are enforced here. Missing fields and bad values are
    left to the authorization pipeline so they come back as denials naming
    the offending field.
    """
    model_config = ConfigDict(extra="ignore")

    tokenId: Optional[Union[StrictInt, StrictStr]] = None
    password: Optional[StrictStr] = None
    salt: Optional[StrictStr] = None
    claimerAddress: Optional[StrictStr] = None
    gateData: Optional[StrictStr] = None

    def as_payload(self) -> Dict[str, Any]:
        return self.model_dump()

class HealthResponse(BaseModel):
    status: str
    configured: bool
    contractAddress: Optional[str] = None
    chainId: Optional[int] = None
    registryBackend: Optional[str] = None
