"""ERC-8004 metadata builder.

Constructs the identity document published to IPFS and referenced by the
on-chain registration. Pure: the service endpoint is injected through
``EndpointConfig`` rather than read from the environment here.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import IdentityMetadata, ProvisionFormData, ServiceEndpoint
from ..provisioning.errors import ValidationError

MAX_NAME_LENGTH = 60
MAX_DESCRIPTION_LENGTH = 300
MAX_CAPABILITIES = 10


@dataclass(frozen=True, slots=True)
class EndpointConfig:
    endpoint: str
    x402_support: bool = True

    @classmethod
    def from_settings(cls, settings) -> EndpointConfig:
        return cls(
            endpoint=settings.service_endpoint,
            x402_support=settings.x402_support,
        )


def build_identity_metadata(
    form: ProvisionFormData,
    endpoint_config: EndpointConfig,
) -> IdentityMetadata:
    """Build an ERC-8004 document from wizard input.

    Name and description are trimmed; capabilities are trimmed, blanks and
    duplicates dropped (first occurrence wins).

    Raises:
        ValidationError: empty name or capability list, a field over
            its length limit, or a non-numeric token id.
    """
    name = form.agent_name.strip()
    description = form.description.strip()
    capabilities = _normalize_capabilities(form.capabilities)

    if not name:
        raise ValidationError('agent name is required')
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f'agent name must be at most {MAX_NAME_LENGTH} characters'
        )
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f'description must be at most {MAX_DESCRIPTION_LENGTH} characters'
        )
    if not capabilities:
        raise ValidationError('at least one capability is required')
    if len(capabilities) > MAX_CAPABILITIES:
        raise ValidationError(
            f'at most {MAX_CAPABILITIES} capabilities are allowed'
        )
    if not form.token_id.strip().isdecimal():
        raise ValidationError('token id must be a decimal number')
    if not endpoint_config.endpoint:
        raise ValidationError('service endpoint is not configured')

    return IdentityMetadata(
        name=name,
        description=description,
        services=(
            ServiceEndpoint(
                endpoint=endpoint_config.endpoint,
                x402_support=endpoint_config.x402_support,
            ),
        ),
        capabilities=capabilities,
    )


class MetadataBuilder:
    """Binds an endpoint configuration once at process start."""

    def __init__(self, endpoint_config: EndpointConfig) -> None:
        self._endpoint_config = endpoint_config

    def build(self, form: ProvisionFormData) -> IdentityMetadata:
        return build_identity_metadata(form, self._endpoint_config)


def _normalize_capabilities(raw) -> tuple[str, ...]:
    seen: list[str] = []
    for item in raw:
        value = str(item).strip()
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)
