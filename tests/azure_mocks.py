"""Pulumi mocks standing in for the Azure and random providers."""

import pulumi
from pulumi.runtime import rpc

TENANT_ID = "72f988bf-0000-0000-0000-000000000000"
SUBSCRIPTION_ID = "11111111-2222-3333-4444-555555555555"
PRINCIPAL_ID = "99999999-0000-0000-0000-00000000abcd"

# Input that carries the physical name of each resource type
NAME_INPUTS = {
    "azure-native:resources:ResourceGroup": "resourceGroupName",
    "azure-native:storage:StorageAccount": "accountName",
    "azure-native:storage:BlobContainer": "containerName",
    "azure-native:storage:Blob": "blobName",
    "azure-native:keyvault:Vault": "vaultName",
    "azure-native:keyvault:Secret": "secretName",
}


def plain(value):
    """Strip secret wrappers from values recorded by the mocks."""
    if isinstance(value, dict):
        if rpc._special_sig_key in value:
            return plain(value.get("value"))
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [plain(v) for v in value]
    return value


class AzureMocks(pulumi.runtime.Mocks):
    def __init__(self):
        self.registered = {}

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        inputs = plain(dict(args.inputs))
        self.registered[args.name] = (args.typ, inputs)

        state = dict(args.inputs)
        name = inputs.get(NAME_INPUTS.get(args.typ, "name")) or args.name
        state["name"] = name

        if args.typ == "azure-native:keyvault:Secret":
            uri = f"https://{inputs['vaultName']}.vault.azure.net/secrets/{name}"
            state["properties"] = {"secretUri": uri, "secretUriWithVersion": f"{uri}/0123456789"}
        elif args.typ == "azure-native:web:WebApp":
            state["defaultHostName"] = f"{name}.azurewebsites.net"
            state["identity"] = {
                "type": "SystemAssigned",
                "principalId": PRINCIPAL_ID,
                "tenantId": TENANT_ID,
            }
        elif args.typ.startswith("random:"):
            state["result"] = "x7k2qa"

        resource_id = f"/subscriptions/{SUBSCRIPTION_ID}/mock/{args.typ.split(':')[-1]}/{name}"
        return [resource_id, state]

    def call(self, args: pulumi.runtime.MockCallArgs):
        token = args.token.lower()
        if token.endswith("getclientconfig"):
            return {
                "clientId": "client",
                "objectId": "object",
                "subscriptionId": SUBSCRIPTION_ID,
                "tenantId": TENANT_ID,
            }
        if token.endswith("getresourcegroup"):
            name = args.args.get("resourceGroupName")
            return {
                "id": f"/subscriptions/{SUBSCRIPTION_ID}/resourceGroups/{name}",
                "location": "eastus",
                "name": name,
                "type": "Microsoft.Resources/resourceGroups",
            }
        if token.endswith("getstorageaccount"):
            name = args.args.get("accountName")
            return {
                "id": f"/subscriptions/{SUBSCRIPTION_ID}/storageAccounts/{name}",
                "kind": "StorageV2",
                "location": "eastus",
                "name": name,
                "sku": {"name": "Standard_LRS", "tier": "Standard"},
            }
        if token.endswith("liststorageaccountkeys"):
            return {
                "keys": [
                    {"keyName": "key1", "permissions": "Full", "value": "storage-key-1"},
                    {"keyName": "key2", "permissions": "Full", "value": "storage-key-2"},
                ]
            }
        if token.endswith("liststorageaccountservicesas"):
            return {"serviceSasToken": "sv=2022-11-02&sr=c&sp=r&sig=mock"}
        return {}


MOCKS = AzureMocks()
pulumi.runtime.set_mocks(MOCKS, preview=False)


