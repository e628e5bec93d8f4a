"""Backend (Delve) provisioning client."""

from .provisioner import BackendProvisioner, IdentityRef

__all__ = ['BackendProvisioner', 'IdentityRef']
