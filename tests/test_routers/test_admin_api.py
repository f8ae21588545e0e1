"""HTTP tests for the admin API."""

from datetime import datetime

from sqlalchemy import update

from catalog.db.models import AuditLogEntry


def _create(client, name, **extra):
    response = client.post("/admin/categories", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthentication:
    def test_category_routes_require_login(self, client):
        assert client.get("/admin/categories").status_code == 401
        assert client.post("/admin/categories", json={"name": "Salon"}).status_code == 401

    def test_bad_credentials(self, client, admin_user):
        response = client.post("/admin/login", json={"user_name": "yonetici", "password": "yanlis"})
        assert response.status_code == 401

    def test_login_and_logout_are_audited(self, admin_client, audit, admin_user):
        assert admin_client.post("/admin/logout").json() == {"status": "ok"}
        actions = [entry.action for entry in audit.query(table_name="admin_users").items]
        assert actions == ["LOGOUT", "LOGIN"]
        assert admin_client.get("/admin/categories").status_code == 401


class TestCategories:
    def test_create(self, admin_client, audit):
        body = _create(admin_client, "Yatak Odası")
        assert body["slug"] == "yatak-odasi"
        assert body["visible"] is True

        entry = audit.query(action="CREATE").items[0]
        assert entry.actor == "yonetici"
        assert entry.ip_address == "testclient"

    def test_create_short_name(self, admin_client):
        assert admin_client.post("/admin/categories", json={"name": "a"}).status_code == 422

    def test_create_with_missing_parent(self, admin_client):
        response = admin_client.post("/admin/categories", json={"name": "Sehpa", "parent_id": 999})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_parent"

    def test_listing_is_ordered_depth_first(self, admin_client, make_product):
        salon = _create(admin_client, "Salon")
        _create(admin_client, "Koltuk", parent_id=salon["id"])
        _create(admin_client, "Bahçe")
        make_product(category_ids=[salon["id"]])

        categories = admin_client.get("/admin/categories").json()["categories"]
        assert [(c["name"], c["depth"]) for c in categories] == [("Bahçe", 0), ("Salon", 0), ("Koltuk", 1)]
        assert categories[1]["product_count"] == 1
        assert categories[1]["child_count"] == 1

        found = admin_client.get("/admin/categories", params={"q": "kolt"}).json()
        assert [c["name"] for c in found["categories"]] == ["Koltuk"]

    def test_detail_lists_move_targets(self, admin_client):
        salon = _create(admin_client, "Salon")
        koltuk = _create(admin_client, "Koltuk", parent_id=salon["id"])
        mutfak = _create(admin_client, "Mutfak")

        body = admin_client.get(f"/admin/categories/{salon['id']}").json()
        assert body["child_count"] == 1
        assert [target["id"] for target in body["move_targets"]] == [mutfak["id"]]
        assert koltuk["id"] not in {target["id"] for target in body["move_targets"]}

    def test_detail_not_found(self, admin_client):
        response = admin_client.get("/admin/categories/404")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_update(self, admin_client):
        salon = _create(admin_client, "Salon", description="Oturma grupları")
        response = admin_client.put(f"/admin/categories/{salon['id']}", json={"name": "Oturma Odası"})
        assert response.status_code == 200
        body = response.json()
        assert body["slug"] == "oturma-odasi"
        assert body["description"] == "Oturma grupları"
        assert body["version"] == 2

    def test_update_with_stale_version(self, admin_client):
        salon = _create(admin_client, "Salon")
        response = admin_client.put(
            f"/admin/categories/{salon['id']}",
            json={"name": "Salon", "expected_version": 7},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_set_parent_cycle(self, admin_client):
        salon = _create(admin_client, "Salon")
        koltuk = _create(admin_client, "Koltuk", parent_id=salon["id"])
        response = admin_client.post(f"/admin/categories/{salon['id']}/parent", json={"parent_id": koltuk["id"]})
        assert response.status_code == 400
        assert response.json()["error"] == "circular_reference"

    def test_set_parent(self, admin_client):
        salon, mutfak = _create(admin_client, "Salon"), _create(admin_client, "Mutfak")
        response = admin_client.post(f"/admin/categories/{mutfak['id']}/parent", json={"parent_id": salon["id"]})
        assert response.status_code == 200
        assert response.json()["parent_id"] == salon["id"]


class TestDeleteAndRestore:
    def test_delete_requires_target(self, admin_client, make_product):
        salon = _create(admin_client, "Salon")
        make_product(category_ids=[salon["id"]])
        response = admin_client.post(f"/admin/categories/{salon['id']}/delete")
        assert response.status_code == 409
        assert response.json()["error"] == "target_required"

    def test_delete_with_target(self, admin_client, make_product):
        salon, mutfak = _create(admin_client, "Salon"), _create(admin_client, "Mutfak")
        make_product(category_ids=[salon["id"]])
        response = admin_client.post(
            f"/admin/categories/{salon['id']}/delete",
            json={"move_to_category_id": mutfak["id"]},
        )
        assert response.status_code == 200
        assert response.json() == {"moved_products": 1, "moved_children": 0, "moved_to": mutfak["id"]}

        detail = admin_client.get(f"/admin/categories/{salon['id']}").json()
        assert detail["visible"] is False
        assert detail["move_targets"] == []

    def test_delete_invalid_target(self, admin_client, make_product):
        salon = _create(admin_client, "Salon")
        make_product(category_ids=[salon["id"]])
        response = admin_client.post(
            f"/admin/categories/{salon['id']}/delete",
            json={"move_to_category_id": salon["id"]},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_target"

    def test_delete_twice(self, admin_client):
        salon = _create(admin_client, "Salon")
        assert admin_client.post(f"/admin/categories/{salon['id']}/delete").status_code == 200
        assert admin_client.post(f"/admin/categories/{salon['id']}/delete").status_code == 404

    def test_restore(self, admin_client):
        salon = _create(admin_client, "Salon")
        admin_client.post(f"/admin/categories/{salon['id']}/delete")
        response = admin_client.post(f"/admin/categories/{salon['id']}/restore")
        assert response.status_code == 200
        assert response.json()["visible"] is True


class TestProductCategories:
    def test_set_categories(self, admin_client, make_product, audit):
        salon, mutfak = _create(admin_client, "Salon"), _create(admin_client, "Mutfak")
        product = make_product(category_ids=[salon["id"]])

        response = admin_client.put(
            f"/admin/products/{product.id}/categories",
            json={"category_ids": [mutfak["id"], 999]},
        )

        assert response.status_code == 200
        assert response.json()["category_ids"] == [mutfak["id"]]
        entry = audit.query(table_name="products").items[0]
        assert entry.old_values == {"category_ids": [salon["id"]]}
        assert entry.new_values == {"category_ids": [mutfak["id"]]}

    def test_unknown_product(self, admin_client):
        response = admin_client.put("/admin/products/999/categories", json={"category_ids": []})
        assert response.status_code == 404


class TestLogs:
    def test_list_and_filter(self, admin_client):
        salon = _create(admin_client, "Salon")
        admin_client.put(f"/admin/categories/{salon['id']}", json={"name": "Salon Takımı"})

        body = admin_client.get("/admin/logs").json()
        assert [log["action"] for log in body["logs"]] == ["UPDATE", "CREATE", "LOGIN"]
        assert body["pagination"]["total_items"] == 3
        assert body["pagination"]["has_next"] is False

        filtered = admin_client.get("/admin/logs", params={"table": "categories", "action": "CREATE"}).json()
        assert [log["record_id"] for log in filtered["logs"]] == [salon["id"]]

    def test_unknown_action_filter(self, admin_client):
        assert admin_client.get("/admin/logs", params={"action": "ARCHIVE"}).status_code == 422

    def test_show(self, admin_client):
        logs = admin_client.get("/admin/logs").json()["logs"]
        body = admin_client.get(f"/admin/logs/{logs[0]['id']}").json()
        assert body["action"] == "LOGIN"
        assert admin_client.get("/admin/logs/9999").status_code == 404

    def test_clear_removes_expired_entries(self, admin_client, session_factory):
        _create(admin_client, "Salon")
        with session_factory() as session:
            session.execute(
                update(AuditLogEntry).where(AuditLogEntry.action == "LOGIN").values(created_at=datetime(2020, 1, 1))
            )
            session.commit()

        response = admin_client.post("/admin/logs/clear")

        assert response.status_code == 200
        assert response.json()["removed"] == 1
        remaining = admin_client.get("/admin/logs").json()["logs"]
        assert [log["action"] for log in remaining] == ["CREATE"]
