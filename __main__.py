# main.py
import os

import pulumi
from azurenative import AzureResourceBuilder
from config import load_config, parse_config
from functionapp import validate_stack


def secret_lookup(stack_config: pulumi.Config):
    """Find a secret in stack config first, then in the environment."""
    def lookup(key: str):
        value = stack_config.get_secret(key)
        if value is None:
            value = os.environ.get(key.upper())
        return value
    return lookup


def main():
    stack_config = pulumi.Config()

    # Load YAML configuration
    config_data = load_config(stack_config.get("config_file") or "config.yaml")

    # Fail before creating anything if the declarations are mis-wired
    try:
        validate_stack(parse_config(config_data), secret_lookup(stack_config))
    except ValueError as e:
        pulumi.log.error(str(e))
        raise

    try:
        builder = AzureResourceBuilder(config_data)
    except Exception as e:
        pulumi.log.error(f"Failed to initialize AzureResourceBuilder: {e}")
        raise

    # Build resources
    try:
        builder.build()
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    # Export the app name and hostname
    try:
        builder.export_outputs()
    except Exception as e:
        pulumi.log.error(f"Failed to export outputs: {e}")
        raise


if __name__ == "__main__":
    main()
