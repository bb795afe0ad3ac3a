"""
Credential resolution from environment variables and ``.env`` files.

Credentials are declared as ``<PREFIX><NAME>_<PROPERTY>`` variables, e.g.::

    N8N_CREDENTIAL_API_TYPE=httpBasicAuth
    N8N_CREDENTIAL_API_USERNAME=alice
    N8N_CREDENTIAL_API_PASSWORD=secret

which yields credential ``API`` of type ``httpBasicAuth`` with data
``{"username": "alice", "password": "secret"}``. Property names are
lowercased; the ``type`` property is mandatory.

Before a credential is sent to the engine its data keys are renamed through
``CREDENTIAL_FIELD_MAPPINGS`` so that environment-friendly names line up with
the engine's credential schema for the configured engine version.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from dotenv import dotenv_values

from shared.errors import CredentialError
from shared.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PREFIX = "N8N_CREDENTIAL_"
ENV_REFERENCE_TYPE = "env"

_PLACEHOLDER = re.compile(r"^\$\{([^}]+)\}$")


@dataclass
class ResolvedCredential:
    name: str
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CredentialFieldMapping:
    """Renames applied to one credential type from ``min_engine_version`` on."""

    credential_type: str
    renames: Mapping[str, str]
    min_engine_version: Optional[str] = None


CREDENTIAL_FIELD_MAPPINGS: Tuple[CredentialFieldMapping, ...] = (
    CredentialFieldMapping("httpBasicAuth", {"username": "user"}),
    CredentialFieldMapping("httpHeaderAuth", {"header_name": "name", "header_value": "value"}),
    CredentialFieldMapping("httpQueryAuth", {"query_name": "name", "query_value": "value"}),
    CredentialFieldMapping(
        "oAuth2Api",
        {
            "client_id": "clientId",
            "client_secret": "clientSecret",
            "access_token_url": "accessTokenUrl",
            "auth_url": "authUrl",
            "grant_type": "grantType",
        },
    ),
    CredentialFieldMapping("httpBearerAuth", {"bearer_token": "token"}, min_engine_version="1.0.0"),
)


def _version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def _applies(mapping: CredentialFieldMapping, engine_version: Optional[str]) -> bool:
    if mapping.min_engine_version is None or engine_version is None:
        return True
    return _version_tuple(engine_version) >= _version_tuple(mapping.min_engine_version)


def remap_credential_fields(
    credential_type: str,
    data: Mapping[str, Any],
    engine_version: Optional[str] = None,
    mappings: Sequence[CredentialFieldMapping] = CREDENTIAL_FIELD_MAPPINGS,
) -> Dict[str, Any]:
    """
    Rename ``data`` keys for ``credential_type``.

    An unknown ``engine_version`` is treated as the newest engine. A rename
    never overwrites a key that is already present.
    """
    remapped = dict(data)
    for mapping in mappings:
        if mapping.credential_type != credential_type or not _applies(mapping, engine_version):
            continue
        for source, target in mapping.renames.items():
            if source in remapped and target not in remapped:
                remapped[target] = remapped.pop(source)
    return remapped


class CredentialEnvironment:
    """Reads credential definitions from an environment mapping.

    With no explicit ``environ`` the process environment is used, layered
    over the values of ``env_path`` (process variables win).
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, Optional[str]]] = None,
        prefix: str = DEFAULT_PREFIX,
        env_path: Optional[str] = ".env",
    ) -> None:
        if environ is None:
            merged: Dict[str, Optional[str]] = {}
            if env_path and Path(env_path).is_file():
                merged.update(dotenv_values(env_path))
            merged.update(os.environ)
            environ = merged
        self.environ: Dict[str, str] = {k: v for k, v in environ.items() if v is not None}
        self.prefix = prefix

    @classmethod
    def from_config(cls, config: Any) -> "CredentialEnvironment":
        return cls(prefix=config.credential_prefix, env_path=config.env_path)

    def load(self, prefix: Optional[str] = None) -> Dict[str, ResolvedCredential]:
        prefix = prefix or self.prefix
        groups: Dict[str, Dict[str, str]] = {}
        for key, value in self.environ.items():
            if not key.startswith(prefix):
                continue
            parts = key[len(prefix):].split("_")
            if len(parts) < 2 or not parts[0]:
                continue
            name = parts[0]
            prop = "_".join(parts[1:]).lower()
            groups.setdefault(name, {})[prop] = value

        credentials: Dict[str, ResolvedCredential] = {}
        for name, props in groups.items():
            cred_type = props.get("type")
            if not cred_type:
                logger.warning(f'Credential "{name}" is missing required property "type"')
                continue
            data = {k: v for k, v in props.items() if k not in ("name", "type")}
            credentials[name] = ResolvedCredential(name=name, type=cred_type, data=data)
        return credentials

    def has(self, name: str, prefix: Optional[str] = None) -> bool:
        return name in self.load(prefix)

    def list(self, prefix: Optional[str] = None) -> List[ResolvedCredential]:
        return list(self.load(prefix).values())

    def get(self, name: str, prefix: Optional[str] = None) -> ResolvedCredential:
        credential = self.load(prefix).get(name)
        if credential is None:
            raise CredentialError(
                f'Credential "{name}" not found in environment variables. '
                f"Make sure to define it with the prefix {prefix or self.prefix}",
                {"credential": name},
            )
        return credential

    def substitute(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Replace ``${VAR}`` string values with the variable's value (empty when unset)."""
        resolved: Dict[str, Any] = {}
        for key, value in data.items():
            match = _PLACEHOLDER.match(value) if isinstance(value, str) else None
            if match:
                var = match.group(1)
                if var not in self.environ:
                    logger.warning(f"Environment variable {var} referenced by credential field '{key}' is not set")
                resolved[key] = self.environ.get(var, "")
            else:
                resolved[key] = value
        return resolved

    def resolve(
        self,
        name: str,
        credential_type: Optional[str] = None,
        data: Optional[Mapping[str, Any]] = None,
        env_prefix: Optional[str] = None,
    ) -> ResolvedCredential:
        """
        Turn a declared credential into concrete type and data.

        - ``type == "env"`` with ``data.name`` copies the named environment credential
        - no inline data looks ``name`` up in the environment
        - inline data gets ``${VAR}`` substitution and needs a type
        """
        if credential_type == ENV_REFERENCE_TYPE:
            target = (data or {}).get("name")
            if not target:
                raise CredentialError(f'Credential "{name}" of type "env" needs data.name', {"credential": name})
            found = self.get(str(target), env_prefix)
            return ResolvedCredential(name=name, type=found.type, data=dict(found.data))

        if not data:
            found = self.get(name, env_prefix)
            return ResolvedCredential(name=name, type=credential_type or found.type, data=dict(found.data))

        if not credential_type:
            raise CredentialError(f'Credential "{name}" has inline data but no type', {"credential": name})
        return ResolvedCredential(name=name, type=credential_type, data=self.substitute(data))


__all__ = [
    "CREDENTIAL_FIELD_MAPPINGS",
    "CredentialEnvironment",
    "CredentialFieldMapping",
    "ResolvedCredential",
    "remap_credential_fields",
]
