import hashlib
import inspect
import os
import re
from typing import Any, Dict, List, Optional

import pulumi
import pulumi_azure_native as azure_native
import pulumi_random as random

AZURE_LOCATION_ABBREVIATIONS = {
    "eastus": "eus",
    "eastus2": "eus2",
    "westus": "wus",
    "westus2": "wus2",
    "westus3": "wus3",
    "centralus": "cus",
    "northcentralus": "ncus",
    "southcentralus": "scus",
    "canadacentral": "ccc",
    "canadaeast": "cce",
    "brazilsouth": "brs",
    "brazilsoutheast": "brse",
    "northeurope": "ne",
    "westeurope": "we",
    "uksouth": "uks",
    "ukwest": "ukw",
    "francecentral": "frc",
    "francesouth": "frs",
    "germanywestcentral": "gwc",
    "germanynorth": "gn",
    "norwayeast": "nwe",
    "norwaywest": "nww",
    "swedencentral": "swc",
    "switzerlandnorth": "swn",
    "switzerlandwest": "sww",
    "uaenorth": "uaen",
    "uaecentral": "uaec",
    "australiaeast": "aue",
    "australiasoutheast": "ause",
    "australiacentral": "auc",
    "australiacentral2": "auc2",
    "japaneast": "jpe",
    "japanwest": "jpw",
    "koreacentral": "kc",
    "koreasouth": "ks",
    "southeastasia": "sea",
    "eastasia": "ea",
    "southindia": "si",
    "centralindia": "ci",
    "westindia": "wi",
    "southafricanorth": "san",
    "southafricawest": "saw",
    "qatarcentral": "qc",
    "polandcentral": "plc",
    "israelcentral": "ilc",
    "israelnorth": "iln",
}

# "${storage.name}" or "${var.prefix}" inside a string value
PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

# Storage account and key vault names top out at 24 characters
COMPACT_PREFIX_LENGTH = 14

# Directory hashed into the package blob name, so new code means a new URL
DEFAULT_PACKAGE_PATH = "./app"
PACKAGE_HASH_LENGTH = 12

PROVIDERS = {
    "random": random,
}

def to_snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()

def expression_target(expression: str) -> Optional[str]:
    expression = expression.strip()
    if expression.startswith("var."):
        return None
    return expression.split(".", 1)[0]

def value_targets(value: Any) -> List[str]:
    """Declaration names a single string value refers to."""
    if not isinstance(value, str):
        return []
    if value.startswith("ref:"):
        return [expression_target(value[4:])]
    targets = [expression_target(e) for e in PLACEHOLDER.findall(value)]
    return [t for t in targets if t]

def directory_hash(path: str) -> str:
    """Content hash of every file below path, independent of walk order."""
    digest = hashlib.sha256()
    for root, dirs, files in os.walk(path):
        dirs[:] = sorted(d for d in dirs if d != "__pycache__")
        for filename in sorted(files):
            full_path = os.path.join(root, filename)
            digest.update(os.path.relpath(full_path, path).replace(os.sep, "/").encode())
            with open(full_path, "rb") as file:
                digest.update(file.read())
    return digest.hexdigest()

def _constructor_params(resource_class) -> set:
    # Generated resource classes hide their inputs behind overloads; the real
    # parameter list lives on _internal_init.
    init = getattr(resource_class, "_internal_init", resource_class.__init__)
    return set(inspect.signature(init).parameters.keys())


class AzureResourceBuilder:
    """Turns the ``azure_resources`` declarations of a config into Pulumi resources.

    Declarations reference each other with ``ref:name.attr`` values or
    ``${name.attr}`` placeholders; the builder creates them in dependency
    order and keeps every created resource (or invoke result) in
    ``self.resources`` under its declaration name.
    """

    def __init__(self, config_data: dict):
        self.config = config_data
        self.resources = {}
        self._pulumi_config = None
        self._package_hash = None

    @property
    def pulumi_config(self) -> pulumi.Config:
        if self._pulumi_config is None:
            self._pulumi_config = pulumi.Config()
        return self._pulumi_config

    def get_abbreviation(self, location: str) -> str:
        # If the location is recognized, use abbreviation; else fallback to first 3 letters
        return AZURE_LOCATION_ABBREVIATIONS.get(location.lower(), location[:3].lower())

    def generate_resource_name(self, base_name: str) -> str:
        return f"{self.context['prefix']}-{base_name}".lower()

    @property
    def context(self) -> Dict[str, str]:
        team = self.config.get("team", "team").lower()
        service = self.config.get("service", "svc").lower()
        env = self.config.get("environment", "dev").lower()
        location = self.config.get("location", "eastus").lower()
        loc_abbr = self.get_abbreviation(location)
        prefix = f"{team}-{service}-{env}-{loc_abbr}"
        return {
            "team": team,
            "service": service,
            "environment": env,
            "location": location,
            "location_abbr": loc_abbr,
            "prefix": prefix,
            "compact_prefix": re.sub(r"[^a-z0-9]", "", prefix)[:COMPACT_PREFIX_LENGTH],
        }

    # ------------------------------------------------------------------
    # Dependency graph
    # ------------------------------------------------------------------

    def _declarations(self) -> List[dict]:
        return self.config.get("azure_resources") or []

    def references(self, value: Any) -> List[str]:
        """Names of the declarations a value refers to."""
        found = []
        if isinstance(value, dict):
            for item in value.values():
                found.extend(self.references(item))
        elif isinstance(value, list):
            for item in value:
                found.extend(self.references(item))
        else:
            found.extend(value_targets(value))
        return found

    def dependencies(self) -> Dict[str, List[str]]:
        declared = [d["name"] for d in self._declarations()]
        graph = {}
        for declaration in self._declarations():
            deps = []
            for target in self.references(declaration.get("args", {})):
                if target not in declared:
                    raise ValueError(f"Referenced resource '{target}' not found.")
                if target not in deps:
                    deps.append(target)
            graph[declaration["name"]] = deps
        return graph

    def build_order(self) -> List[str]:
        """Declaration names ordered so every reference is created first.

        Declarations without a dependency between them keep their order from
        the config file.
        """
        graph = self.dependencies()
        order = []
        visiting = []

        def visit(name):
            if name in order:
                return
            if name in visiting:
                cycle = visiting[visiting.index(name):] + [name]
                raise ValueError(f"Dependency cycle between resources: {' -> '.join(cycle)}")
            visiting.append(name)
            for dep in graph[name]:
                visit(dep)
            visiting.pop()
            order.append(name)

        for name in graph:
            visit(name)
        return order

    # ------------------------------------------------------------------
    # Value resolution
    # ------------------------------------------------------------------

    def resolve_reference(self, ref_text: str) -> Any:
        # handle "resourceName.attribute.path", with numeric segments indexing lists
        if "." in ref_text:
            ref_res, ref_path = ref_text.split(".", 1)
            path = ref_path.split(".")
        else:
            ref_res, path = ref_text, ["id"]

        if ref_res not in self.resources:
            raise ValueError(f"Referenced resource '{ref_res}' not found.")

        value = self.resources[ref_res]
        for attr in path:
            if attr.isdigit():
                value = value[int(attr)]
                continue
            value = getattr(value, attr, None)
            if value is None:
                raise ValueError(f"Attribute '{attr}' not found on resource '{ref_res}'")
        return value

    def package_hash(self) -> str:
        if self._package_hash is None:
            path = self.config.get("package_path", DEFAULT_PACKAGE_PATH)
            if not os.path.isdir(path):
                raise ValueError(f"Package directory '{path}' not found")
            self._package_hash = directory_hash(path)[:PACKAGE_HASH_LENGTH]
        return self._package_hash

    def resolve_variable(self, name: str) -> Any:
        context = self.context
        if name in context:
            return context[name]
        if name == "package_hash":
            return self.package_hash()
        if name in self.config:
            return self.config[name]
        raise ValueError(f"Unknown variable 'var.{name}'")

    def resolve_secret(self, key: str) -> pulumi.Output:
        value = self.pulumi_config.get_secret(key)
        if value is not None:
            return value
        env_value = os.environ.get(key.upper())
        if env_value is None:
            raise ValueError(
                f"Secret '{key}' is not set: use 'pulumi config set --secret {key}' "
                f"or the {key.upper()} environment variable"
            )
        return pulumi.Output.secret(env_value)

    def interpolate(self, template: str) -> Any:
        expressions = PLACEHOLDER.findall(template)
        values = []
        for expression in expressions:
            expression = expression.strip()
            if expression.startswith("var."):
                values.append(self.resolve_variable(expression[4:]))
            else:
                values.append(self.resolve_reference(expression))

        def render(resolved):
            parts = iter(resolved)
            return PLACEHOLDER.sub(lambda _: str(next(parts)), template)

        return pulumi.Output.all(*values).apply(render)

    def resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self.resolve_args(value)
        if isinstance(value, list):
            return [self.resolve_value(item) for item in value]
        if not isinstance(value, str):
            return value
        if value.startswith("ref:"):
            return self.resolve_reference(value[4:])
        if value.startswith("config:"):
            return self.pulumi_config.require(value[7:])
        if value.startswith("secret:"):
            return self.resolve_secret(value[7:])
        if value.startswith("archive:"):
            return pulumi.FileArchive(value[8:])
        if PLACEHOLDER.search(value):
            return self.interpolate(value)
        return value

    def resolve_args(self, args: dict) -> dict:
        return {key: self.resolve_value(value) for key, value in args.items()}

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def resolve_type(self, resource_type: str):
        """Return (module, name) for a declaration type, or (None, name)."""
        if ":" in resource_type:
            provider, path = resource_type.split(":", 1)
        else:
            provider, path = "azure-native", resource_type

        if provider == "invoke":
            module_name, func_name = path.rsplit(".", 1)
            return getattr(azure_native, module_name, None), f"{func_name}_output"
        if provider in PROVIDERS:
            return PROVIDERS[provider], path

        module_name, class_name = path.rsplit(".", 1)
        return getattr(azure_native, module_name, None), class_name

    def invoke(self, name: str, func, resolved_args: dict, secret: bool = False) -> None:
        params = set(inspect.signature(func).parameters.keys()) - {"opts"}
        unknown = set(resolved_args) - params
        if unknown:
            raise ValueError(f"Unexpected arguments {sorted(unknown)} for data lookup '{name}'")
        result = func(**resolved_args)
        if secret:
            result = pulumi.Output.secret(result)
        self.resources[name] = result
        pulumi.log.info(f"Looked up '{name}' via '{func.__name__}'")

    def lookup_existing(self, name: str, module, class_name: str, resolved_args: dict) -> None:
        get_func_name = f"get_{to_snake_case(class_name)}_output"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            raise ValueError(f"Function '{get_func_name}' not found for existing resource '{name}'")

        valid_params = set(inspect.signature(get_func).parameters.keys()) - {"opts"}
        # The *_name parameters identify the resource; the rest (expand, ...) are optional
        required_params = {p for p in valid_params if p.endswith("_name")}
        get_params = {k: v for k, v in resolved_args.items() if k in valid_params}
        missing = required_params - set(get_params.keys())
        if missing:
            raise ValueError(
                f"Missing required params {sorted(missing)} for existing resource '{name}'"
            )

        self.resources[name] = get_func(**get_params)
        pulumi.log.info(f"Fetched existing resource '{name}' via '{get_func_name}'")

    def build_resource(self, declaration: dict) -> None:
        name = declaration["name"]
        resource_type = declaration["type"]
        args = dict(declaration.get("args") or {})

        is_existing = args.pop("existing", False)

        module, member_name = self.resolve_type(resource_type)
        if not module:
            pulumi.log.warn(f"Module for '{resource_type}' not found. Skipping '{name}'.")
            return

        member = getattr(module, member_name, None)
        if member is None:
            pulumi.log.warn(f"'{member_name}' not found for type '{resource_type}'. Skipping '{name}'.")
            return

        resolved_args = self.resolve_args(args)

        if resource_type.startswith("invoke:"):
            # list* actions hand back account keys and SAS tokens
            self.invoke(name, member, resolved_args, secret=member_name.startswith("list_"))
            return

        # If the resource is marked as existing, attempt a dynamic get_* function
        if is_existing:
            self.lookup_existing(name, module, member_name, resolved_args)
            return

        params = _constructor_params(member)

        # Check if resource supports 'tags'
        if "tags" in params:
            resource_tags = self.config.get("tags")
            if resource_tags:
                resolved_args.setdefault("tags", resource_tags)
        else:
            resolved_args.pop("tags", None)

        # If resource constructor expects location, ensure it's present or fallback
        if "location" in params:
            resolved_args.setdefault("location", self.config.get("location", "eastus"))
        else:
            resolved_args.pop("location", None)

        pulumi_name = self.generate_resource_name(name)
        self.resources[name] = member(pulumi_name, **resolved_args)
        pulumi.log.info(f"Created resource: {pulumi_name} ({resource_type})")

    def build(self):
        declarations = {d["name"]: d for d in self._declarations()}
        for name in self.build_order():
            self.build_resource(declarations[name])

    def export_outputs(self) -> Dict[str, Any]:
        """Export the configured stack outputs, or every resource id when none are configured."""
        exported = {}
        outputs = self.config.get("outputs")
        if outputs:
            for name, expression in outputs.items():
                exported[name] = self.resolve_value(expression)
        else:
            for name, resource in self.resources.items():
                if isinstance(resource, pulumi.Resource):
                    exported[name] = resource.id

        for name, value in exported.items():
            pulumi.export(name, value)
        return exported
