"""End-to-end tests for the support desk HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from typing import Dict, Tuple
from unittest import mock

import httpx
from fastapi.testclient import TestClient

from supportdesk.ai import ImageGenerationClient, TextGenerationClient
from supportdesk.config import AISettings, Settings
from supportdesk.database import Database
from supportdesk.provisioning import ProvisioningWorkflow
from supportdesk.security import SESSION_COOKIE_NAME
from supportdesk.service import create_app

DESCRIPTION = "Shiny red Acme Widget, built to last."


def _text_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": DESCRIPTION}}]})


def _failing_image_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="Model is loading")


class SupportDeskServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tempdir.name) / "supportdesk.sqlite3"
        self.database = Database(db_path)
        self.database.initialize()
        self.admin = ProvisioningWorkflow(self.database, self.database).bootstrap_admin(
            name="Root Admin", email="admin@example.com", password="adminpw1"
        )
        self._env = mock.patch.dict(
            "os.environ",
            {"SUPPORTDESK_HF_TEXT_TOKEN": "text-token", "SUPPORTDESK_HF_IMAGE_TOKEN": "image-token"},
        )
        self._env.start()

        settings = Settings(
            database_path=db_path,
            secure_cookies=False,
            session_ttl=timedelta(hours=1),
            ai=AISettings(),
        )
        app = create_app(
            database=self.database,
            settings=settings,
            text_client=TextGenerationClient(
                client=httpx.Client(transport=httpx.MockTransport(_text_handler))
            ),
            image_client=ImageGenerationClient(
                client=httpx.Client(transport=httpx.MockTransport(_failing_image_handler))
            ),
        )
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.client.close()
        self._env.stop()
        self._tempdir.cleanup()

    def _login(self, email: str, password: str) -> Dict[str, str]:
        response = self.client.post("/login", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        # A sign-in replaces the session held in the cookie jar; tests use bearer tokens.
        self.client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def _build_org(self) -> Tuple[Dict[str, Dict[str, str]], Dict[str, str]]:
        admin = self._login("admin@example.com", "adminpw1")

        manager = self.client.post(
            "/create-manager",
            headers=admin,
            json={"name": "Mia Manager", "email": "mia@example.com", "password": "managerpw"},
        )
        self.assertEqual(manager.status_code, 201, manager.text)
        manager_headers = self._login("mia@example.com", "managerpw")

        member = self.client.post(
            "/create-team-member",
            headers=manager_headers,
            json={"name": "Tom Team", "email": "tom@example.com", "password": "teampw1"},
        )
        self.assertEqual(member.status_code, 201, member.text)
        self.assertEqual(member.json()["user"]["manager_id"], manager.json()["user"]["id"])

        signup = self.client.post(
            "/signup",
            json={"name": "Cara Customer", "email": "cara@example.com", "password": "custpw1"},
        )
        self.assertEqual(signup.status_code, 201, signup.text)
        self.assertEqual(signup.json()["user"]["role"], "customer")

        headers = {
            "admin": admin,
            "manager": manager_headers,
            "team": self._login("tom@example.com", "teampw1"),
            "customer": self._login("cara@example.com", "custpw1"),
        }
        ids = {
            "manager": manager.json()["user"]["id"],
            "team": member.json()["user"]["id"],
            "customer": signup.json()["user"]["id"],
        }
        return headers, ids

    def test_healthcheck(self) -> None:
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_login_issues_token_and_cookie(self) -> None:
        response = self.client.post(
            "/login", json={"email": "ADMIN@example.com", "password": "adminpw1"}
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["user"]["role"], "admin")
        self.assertIn(SESSION_COOKIE_NAME, response.cookies)

        me = self.client.get("/me")
        self.assertEqual(me.status_code, 200, me.text)
        self.assertEqual(me.json()["user"]["id"], self.admin.id)

        logout = self.client.post("/logout", headers={"Authorization": f"Bearer {payload['token']}"})
        self.assertEqual(logout.status_code, 200, logout.text)
        self.client.cookies.clear()
        after = self.client.get("/me", headers={"Authorization": f"Bearer {payload['token']}"})
        self.assertEqual(after.status_code, 401)

    def test_login_failures(self) -> None:
        wrong = self.client.post("/login", json={"email": "admin@example.com", "password": "nope"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.json(), {"error": "Invalid email or password"})

        missing = self.client.post("/login", json={"email": "admin@example.com"})
        self.assertEqual(missing.status_code, 400)
        self.assertIn("error", missing.json())

    def test_requests_without_session_are_rejected(self) -> None:
        for method, path in (("GET", "/me"), ("GET", "/inbox"), ("POST", "/send-message")):
            response = self.client.request(
                method, path, headers={"Authorization": "Bearer bogus"}, json={}
            )
            self.assertEqual(response.status_code, 401, path)
            self.assertEqual(response.json(), {"error": "Unauthorized"})

    def test_malformed_json_is_a_bad_request(self) -> None:
        response = self.client.post(
            "/signup", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_permission_and_validation_errors(self) -> None:
        org, ids = self._build_org()

        forbidden = self.client.post(
            "/create-manager",
            headers=org["manager"],
            json={"name": "X", "email": "x@example.com", "password": "secret1"},
        )
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json(), {"error": "Forbidden: Admins only"})

        missing = self.client.post("/create-manager", headers=org["admin"], json={"name": "X"})
        self.assertEqual(missing.status_code, 400)

        duplicate = self.client.post(
            "/create-manager",
            headers=org["admin"],
            json={"name": "Dup", "email": "mia@example.com", "password": "managerpw"},
        )
        self.assertEqual(duplicate.status_code, 500)

        customer_creates = self.client.post(
            "/create-team-member",
            headers=org["customer"],
            json={"name": "X", "email": "x@example.com", "password": "secret1"},
        )
        self.assertEqual(customer_creates.status_code, 403)

    def test_support_conversation_flow(self) -> None:
        org, ids = self._build_org()
        team_id = ids["team"]
        customer_id = ids["customer"]

        early_reply = self.client.post(
            "/send-message",
            headers=org["team"],
            json={"recipient_id": customer_id, "content": "Can I help?"},
        )
        self.assertEqual(early_reply.status_code, 403)

        question = self.client.post(
            "/send-message",
            headers=org["customer"],
            json={"recipient_id": team_id, "content": "My order is late"},
        )
        self.assertEqual(question.status_code, 200, question.text)
        self.assertTrue(question.json()["success"])

        contacts = self.client.get("/contacts", headers=org["team"])
        self.assertEqual([user["id"] for user in contacts.json()["users"]], [customer_id])

        reply = self.client.post(
            "/send-message",
            headers=org["team"],
            json={"recipient_id": customer_id, "content": "Looking into it"},
        )
        self.assertEqual(reply.status_code, 200, reply.text)

        conversation = self.client.get(f"/messages?with={team_id}", headers=org["customer"])
        self.assertEqual(
            [message["content"] for message in conversation.json()["messages"]],
            ["Looking into it", "My order is late"],
        )

        inbox = self.client.get("/inbox", headers=org["customer"])
        self.assertEqual(len(inbox.json()["messages"]), 1)

        missing = self.client.post(
            "/send-message",
            headers=org["customer"],
            json={"recipient_id": "nobody", "content": "hi"},
        )
        self.assertEqual(missing.status_code, 404)

        empty = self.client.post(
            "/send-message",
            headers=org["customer"],
            json={"recipient_id": team_id, "content": "  "},
        )
        self.assertEqual(empty.status_code, 400)

    def test_admin_broadcast_and_directory(self) -> None:
        org, ids = self._build_org()

        broadcast = self.client.post(
            "/send-message",
            headers=org["admin"],
            json={"broadcast": True, "content": "Maintenance tonight"},
        )
        self.assertEqual(broadcast.status_code, 200, broadcast.text)
        self.assertEqual(
            set(broadcast.json()["delivered"]),
            {ids["manager"], ids["team"], ids["customer"]},
        )

        not_admin = self.client.post(
            "/send-message",
            headers=org["manager"],
            json={"broadcast": True, "content": "Hello team"},
        )
        self.assertEqual(not_admin.status_code, 403)

        managers = self.client.get("/managers", headers=org["admin"])
        self.assertEqual([user["id"] for user in managers.json()["users"]], [ids["manager"]])
        self.assertEqual(self.client.get("/managers", headers=org["manager"]).status_code, 403)

        own_team = self.client.get("/team-members", headers=org["manager"])
        self.assertEqual([user["id"] for user in own_team.json()["users"]], [ids["team"]])
        filtered = self.client.get(
            "/team-members",
            headers=org["admin"],
            params={"manager_id": ids["manager"]},
        )
        self.assertEqual(len(filtered.json()["users"]), 1)
        self.assertEqual(self.client.get("/team-members", headers=org["customer"]).status_code, 403)

    def test_team_member_sees_manager_and_teammates(self) -> None:
        org, ids = self._build_org()

        teammate = self.client.post(
            "/create-team-member",
            headers=org["manager"],
            json={"name": "Una Team", "email": "una@example.com", "password": "teampw2"},
        )
        self.assertEqual(teammate.status_code, 201, teammate.text)

        other_manager = self.client.post(
            "/create-manager",
            headers=org["admin"],
            json={"name": "Max Manager", "email": "max@example.com", "password": "managerpw"},
        )
        self.assertEqual(other_manager.status_code, 201, other_manager.text)
        outsider = self.client.post(
            "/create-team-member",
            headers=org["admin"],
            json={
                "name": "Oz Team",
                "email": "oz@example.com",
                "password": "teampw3",
                "manager_id": other_manager.json()["user"]["id"],
            },
        )
        self.assertEqual(outsider.status_code, 201, outsider.text)

        view = self.client.get("/team-members", headers=org["team"])
        self.assertEqual(view.status_code, 200, view.text)
        payload = view.json()
        self.assertEqual(payload["manager"]["id"], ids["manager"])
        self.assertEqual(
            [user["id"] for user in payload["users"]], [teammate.json()["user"]["id"]]
        )

    def test_product_tools(self) -> None:
        headers = self._login("admin@example.com", "adminpw1")

        description = self.client.post(
            "/generate-description",
            headers=headers,
            json={"product": "Widget", "brand": "Acme", "color": "red", "features": ["durable"]},
        )
        self.assertEqual(description.status_code, 200, description.text)
        self.assertEqual(description.json(), {"description": DESCRIPTION})

        missing = self.client.post(
            "/generate-description", headers=headers, json={"product": "Widget"}
        )
        self.assertEqual(missing.status_code, 400)

        image = self.client.post("/text-to-image", headers=headers, json={"prompt": "a red widget"})
        self.assertEqual(image.status_code, 503)
        self.assertEqual(image.json(), {"error": "Model is loading"})

        explored = self.client.post(
            "/explore",
            headers=headers,
            json={"product": "Widget", "brand": "Acme", "color": "red", "features": "durable"},
        )
        self.assertEqual(explored.status_code, 200, explored.text)
        self.assertEqual(
            explored.json(),
            {"description": DESCRIPTION, "image": None, "error": "Model is loading"},
        )


if __name__ == "__main__":  # pragma: no cover - convenience for direct execution
    unittest.main()
