"""Integration tests for workflow stage administration"""

import pytest

pytestmark = pytest.mark.integration


def _stage_id(client, name):
    return next(s["id"] for s in client.get("/api/v1/workflow-stages").json() if s["name"] == name)


class TestListStages:

    def test_default_stages(self, viewer_client):
        data = viewer_client.get("/api/v1/workflow-stages").json()

        assert [(s["name"], s["displayName"], s["orderIndex"]) for s in data] == [
            ("QC", "Quality Control", 1),
            ("R1", "Revision 1", 2),
            ("R2", "Revision 2", 3),
            ("R3", "Revision 3", 4),
            ("R4", "Revision 4", 5),
        ]
        assert all(s["isActive"] for s in data)

    def test_active_only(self, admin_client):
        admin_client.patch(f"/api/v1/workflow-stages/{_stage_id(admin_client, 'R4')}", json={"isActive": False})

        names = [s["name"] for s in admin_client.get(
            "/api/v1/workflow-stages", params={"includeInactive": "false"}
        ).json()]
        assert names == ["QC", "R1", "R2", "R3"]


class TestCreateStage:

    def test_admin_creates_stage(self, admin_client):
        response = admin_client.post(
            "/api/v1/workflow-stages",
            json={"name": "legal", "displayName": "Legal review", "orderIndex": 6},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "LEGAL"
        assert data["isActive"] is True

    def test_reviewer_forbidden(self, reviewer_client):
        response = reviewer_client.post(
            "/api/v1/workflow-stages",
            json={"name": "LEGAL", "displayName": "Legal review", "orderIndex": 6},
        )
        assert response.status_code == 403

    @pytest.mark.parametrize("name", ["COMPLETED", "ARCHIVED", "UPLOADED"])
    def test_reserved_name(self, admin_client, name):
        response = admin_client.post(
            "/api/v1/workflow-stages",
            json={"name": name, "displayName": "Nope", "orderIndex": 9},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStageConfiguration"

    def test_duplicate_order(self, admin_client):
        response = admin_client.post(
            "/api/v1/workflow-stages",
            json={"name": "LEGAL", "displayName": "Legal review", "orderIndex": 1},
        )
        assert response.status_code == 409

    def test_negative_order_is_validation_error(self, admin_client):
        response = admin_client.post(
            "/api/v1/workflow-stages",
            json={"name": "LEGAL", "displayName": "Legal review", "orderIndex": -1},
        )
        assert response.status_code == 422


class TestUpdateStage:

    def test_rename_display_name(self, admin_client):
        stage_id = _stage_id(admin_client, "QC")

        response = admin_client.patch(f"/api/v1/workflow-stages/{stage_id}", json={"displayName": "Brand QC"})

        assert response.status_code == 200
        assert response.json()["displayName"] == "Brand QC"
        assert response.json()["name"] == "QC"

    def test_deactivate_occupied_stage(self, admin_client, reviewer_client, confirmed_file):
        reviewer_client.post(f"/api/v1/files/{confirmed_file.id}/transition", json={"action": "ASSIGN"})

        response = admin_client.patch(
            f"/api/v1/workflow-stages/{_stage_id(admin_client, 'QC')}", json={"isActive": False}
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "InvalidStageConfiguration"
        assert body["details"] == {"stage": "QC", "files": 1}

    def test_deactivated_stage_is_skipped(self, admin_client, reviewer_client, confirmed_file):
        admin_client.patch(f"/api/v1/workflow-stages/{_stage_id(admin_client, 'R1')}", json={"isActive": False})

        reviewer_client.post(f"/api/v1/files/{confirmed_file.id}/transition", json={"action": "ASSIGN"})
        response = reviewer_client.post(
            f"/api/v1/files/{confirmed_file.id}/transition", json={"action": "APPROVE"}
        )

        assert response.json()["newStage"] == "R2"

    def test_reviewer_cannot_patch(self, reviewer_client):
        stage_id = _stage_id(reviewer_client, "QC")
        response = reviewer_client.patch(f"/api/v1/workflow-stages/{stage_id}", json={"isActive": False})
        assert response.status_code == 403
