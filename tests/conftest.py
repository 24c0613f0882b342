from __future__ import annotations

from pathlib import Path
from typing import Dict

import pytest

from supportdesk.database import Database
from supportdesk.models import Actor, Profile, Role
from supportdesk.provisioning import ProvisionRequest, ProvisioningWorkflow


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "supportdesk.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def workflow(database: Database) -> ProvisioningWorkflow:
    return ProvisioningWorkflow(database, database)


@pytest.fixture()
def admin(workflow: ProvisioningWorkflow) -> Profile:
    return workflow.bootstrap_admin(name="Root Admin", email="admin@example.com", password="adminpw1")


@pytest.fixture()
def staff(workflow: ProvisioningWorkflow, admin: Profile) -> Dict[Role, Profile]:
    """An admin, one manager with one team member, and a signed-up customer."""

    manager = workflow.create_manager(
        Actor(id=admin.id, role=admin.role),
        name="Mia Manager",
        email="mia@example.com",
        password="managerpw",
    )
    member = workflow.create_team_member(
        Actor(id=manager.id, role=manager.role),
        name="Tom Team",
        email="tom@example.com",
        password="teampw1",
    )
    customer = workflow.signup_customer(
        ProvisionRequest(name="Cara Customer", email="cara@example.com", password="custpw1")
    )
    return {Role.ADMIN: admin, Role.MANAGER: manager, Role.TEAM: member, Role.CUSTOMER: customer}
