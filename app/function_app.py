import json
import os

import azure.functions as func

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

# Resolved by the platform from Key Vault references in the app settings
CREDENTIAL_SETTINGS = ["MESSAGING_ACCOUNT_ID", "MESSAGING_AUTH_TOKEN", "MESSAGING_SENDER_ID"]


@app.route(route="health", methods=["GET"])
def health(req: func.HttpRequest) -> func.HttpResponse:
    missing = [name for name in CREDENTIAL_SETTINGS if not os.environ.get(name)]
    body = {"status": "ok" if not missing else "degraded", "missing_settings": missing}
    return func.HttpResponse(
        json.dumps(body),
        status_code=200 if not missing else 503,
        mimetype="application/json",
    )
