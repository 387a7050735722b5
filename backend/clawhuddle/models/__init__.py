"""SQLModel tables read and written by the gateway subsystem."""

from clawhuddle.models.member_channels import MemberChannel
from clawhuddle.models.org_members import GatewayStatus, OrgMember
from clawhuddle.models.provider_credentials import CredentialKind, ProviderCredential
from clawhuddle.models.skills import MemberSkill, Skill

__all__ = [
    "CredentialKind",
    "GatewayStatus",
    "MemberChannel",
    "MemberSkill",
    "OrgMember",
    "ProviderCredential",
    "Skill",
]
