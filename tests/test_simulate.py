import json

from reviewbot.services.authenticator import authenticate
from reviewbot.simulate import build_webhook_payload, build_webhook_request


def test_simulated_request_passes_authentication():
    pull_request = {
        "number": 12,
        "base": {"sha": "a" * 40, "repo": {"full_name": "octo/widgets"}},
        "head": {"sha": "b" * 40, "repo": {"full_name": "octo/widgets"}},
    }
    body, headers = build_webhook_request(build_webhook_payload(pull_request, 42), "s3cret")

    event = authenticate(
        method="POST",
        event=headers["X-GitHub-Event"],
        body=body,
        signature=headers["X-Hub-Signature-256"],
        secret="s3cret",
    )

    assert event.pull_number == 12
    assert event.installation_id == 42
    assert event.action == "opened"
    assert json.loads(body)["repository"] == {"full_name": "octo/widgets"}
