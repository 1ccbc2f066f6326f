# functionapp.py
"""
Preflight checks for the function app stack.

They run against the parsed configuration before the builder creates
anything, so a mis-wired declaration fails the preview with a readable
message instead of failing halfway through an apply.
"""

import re
from typing import Any, Callable, List, Optional

from azurenative import value_targets
from config import Config, required_secrets

# Built-in "Key Vault Secrets User" role
KEY_VAULT_SECRETS_USER_ROLE_ID = "4633458b-17de-408a-b874-0445c86b69e6"

ROLE_ASSIGNMENT_TYPE = "authorization.RoleAssignment"
VAULT_TYPE = "keyvault.Vault"
SECRET_TYPE = "keyvault.Secret"
FUNCTION_APP_TYPE = "web.WebApp"

KEY_VAULT_REFERENCE = re.compile(
    r"^@Microsoft\.KeyVault\(SecretUri=\$\{\s*([\w-]+)\.properties\.secret_uri(?:_with_version)?\s*\}\)$"
)


def _type_of(config: Config, name: str) -> Optional[str]:
    resource = config.resource(name)
    return resource.type if resource else None


def missing_secrets(config: Config, lookup: Callable[[str], Any]) -> List[str]:
    """Secret keys the declarations need but ``lookup`` cannot supply."""
    return [key for key in required_secrets(config) if lookup(key) is None]


def check_role_assignments(config: Config) -> List[str]:
    problems = []
    assignments = config.resources_of_type(ROLE_ASSIGNMENT_TYPE)
    if len(assignments) != 1:
        problems.append(f"Expected exactly one role assignment, found {len(assignments)}")

    for assignment in assignments:
        args = assignment.args
        role = str(args.get("role_definition_id", ""))
        if not role.endswith(f"/roleDefinitions/{KEY_VAULT_SECRETS_USER_ROLE_ID}"):
            problems.append(f"Role assignment '{assignment.name}' must grant Key Vault Secrets User")

        scopes = value_targets(args.get("scope"))
        if not scopes or _type_of(config, scopes[0]) != VAULT_TYPE:
            problems.append(f"Role assignment '{assignment.name}' must be scoped to a key vault")

        principal = args.get("principal_id")
        principals = value_targets(principal)
        if (
            not principals
            or _type_of(config, principals[0]) != FUNCTION_APP_TYPE
            or not str(principal).rstrip("}").endswith("identity.principal_id")
        ):
            problems.append(
                f"Role assignment '{assignment.name}' must target the function app's managed identity"
            )
    return problems


def check_secret_settings(config: Config) -> List[str]:
    problems = []
    secrets = [r.name for r in config.resources_of_type(SECRET_TYPE)]
    used = set()

    for app in config.resources_of_type(FUNCTION_APP_TYPE):
        settings = (app.args.get("site_config") or {}).get("app_settings") or []
        names = [s.get("name") for s in settings]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            problems.append(f"Function app '{app.name}' repeats app settings {duplicates}")

        for setting in settings:
            value = setting.get("value")
            referenced = [t for t in value_targets(value) if t in secrets]
            if not referenced:
                continue
            match = KEY_VAULT_REFERENCE.match(value)
            if not match:
                problems.append(
                    f"App setting '{setting.get('name')}' must be a Key Vault reference to a secret URI"
                )
                continue
            used.add(match.group(1))

    for secret in secrets:
        if secret not in used:
            problems.append(f"Key vault secret '{secret}' is not referenced by any app setting")
    return problems


def validate_stack(config: Config, lookup: Callable[[str], Any]) -> None:
    """Raise one ValueError listing every problem found in the stack configuration."""
    problems = [f"Missing secret value: {key}" for key in missing_secrets(config, lookup)]
    problems.extend(check_role_assignments(config))
    problems.extend(check_secret_settings(config))
    if problems:
        raise ValueError("Invalid stack configuration:\n  - " + "\n  - ".join(problems))
