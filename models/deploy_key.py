from pydantic import BaseModel, ConfigDict, SecretStr


class DeployKey(BaseModel):
    """SSH private key fetched for a single invocation. The material never appears in repr or logs."""

    model_config = ConfigDict(frozen=True)

    material: SecretStr
    key_type: str
    fingerprint: str
