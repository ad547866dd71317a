"""End-to-end tests for the /api/google Drive endpoints.

All outbound HTTP goes to FakeDrive; the database is in-memory SQLite.
"""

import base64
import json

import requests

from fakes import ADMIN_HEADERS, APP_FOLDER_ID, USER_ID, parse_multipart, session_token
from models import Profile
from services.drive_service import DELETE_FORBIDDEN_MESSAGE, DRIVE_FILES_URL


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


# ─── Authorization ────────────────────────────────────────────────────────────


class TestAuthorization:
    def test_no_credentials_is_401(self, client, profile, drive_tree):
        resp = client.get("/api/google/list", params={"userId": USER_ID})
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthorized access"}
        assert drive_tree.token_calls == []

    def test_wrong_admin_token_is_401(self, client, profile, drive_tree):
        resp = client.get(
            "/api/google/list",
            params={"userId": USER_ID},
            headers={"x-admin-token": "guess"},
        )
        assert resp.status_code == 401

    def test_session_cookie_for_same_user(self, client, profile, drive_tree):
        client.cookies.set("session", session_token(USER_ID))
        resp = client.get("/api/google/list", params={"userId": USER_ID})
        assert resp.status_code == 200

    def test_session_cookie_for_other_user_is_401(self, client, profile, drive_tree):
        client.cookies.set("session", session_token("someone-else"))
        resp = client.get("/api/google/list", params={"userId": USER_ID})
        assert resp.status_code == 401

    def test_expired_session_cookie_is_401(self, client, profile, drive_tree):
        client.cookies.set("session", session_token(USER_ID, max_age=-60))
        resp = client.get("/api/google/list", params={"userId": USER_ID})
        assert resp.status_code == 401

    def test_missing_user_id_is_400(self, client, drive_tree):
        resp = client.get("/api/google/list", headers=ADMIN_HEADERS)
        assert resp.status_code == 400
        assert resp.json()["message"] == "userId required"


# ─── List ─────────────────────────────────────────────────────────────────────


class TestList:
    def test_user_without_token_is_not_connected(self, client, db_session, fake_drive):
        db_session.add(Profile(id=USER_ID))
        db_session.commit()

        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "User not connected to Google Drive"}
        assert fake_drive.calls == []
        assert fake_drive.token_calls == []

    def test_unknown_profile_is_404(self, client, db_session, fake_drive):
        resp = client.get("/api/google/list", params={"userId": "ghost"}, headers=ADMIN_HEADERS)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Profile not found"

    def test_persisted_app_folder_used_directly(self, client, profile, drive_tree):
        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert {f["id"] for f in body["files"]} == {"sub", "doc-top"}
        # No folder search, no folder creation, no containment walk
        assert len(drive_tree.calls) == 1
        assert drive_tree.calls[0].params["q"] == f"'{APP_FOLDER_ID}' in parents and trashed = false"
        assert drive_tree.calls_to("POST") == []

    def test_descriptor_shape(self, client, profile, drive_tree):
        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        notes = next(f for f in resp.json()["files"] if f["id"] == "doc-top")
        assert notes == {
            "id": "doc-top",
            "name": "notes.txt",
            "mimeType": "text/plain",
            "size": "5",
            "modifiedTime": "2025-12-30T10:00:00.000Z",
            "webViewLink": "https://drive.google.com/file/d/doc-top/view",
            "owner": "Test User",
        }

    def test_app_folder_created_on_first_list(self, client, db_session, fake_drive, profile):
        profile.google_app_folder_id = None
        db_session.commit()

        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["files"] == []
        creates = fake_drive.calls_to("POST", DRIVE_FILES_URL)
        assert len(creates) == 1
        db_session.expire_all()
        stored = db_session.get(Profile, USER_ID).google_app_folder_id
        assert stored is not None
        assert fake_drive.files[stored]["name"] == "GEOINFORMATIC"

    def test_nested_parent_inside_app_folder(self, client, profile, drive_tree):
        resp = client.get(
            "/api/google/list",
            params={"userId": USER_ID, "parentId": "deep"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert [f["id"] for f in resp.json()["files"]] == ["doc-deep"]

    def test_parent_outside_app_folder_is_403(self, client, profile, drive_tree):
        resp = client.get(
            "/api/google/list",
            params={"userId": USER_ID, "parentId": "outside"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "parentId not allowed"}
        assert not any("in parents" in c.params.get("q", "") for c in drive_tree.calls)

    def test_parent_with_no_app_folder_is_403(self, client, db_session, profile, drive_tree):
        profile.google_app_folder_id = None
        db_session.commit()

        resp = client.get(
            "/api/google/list",
            params={"userId": USER_ID, "parentId": "sub"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 403

    def test_search_with_quote_is_escaped(self, client, profile, drive_tree):
        resp = client.get(
            "/api/google/list",
            params={"userId": USER_ID, "search": "O'Brien"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 200
        assert drive_tree.calls[-1].params["q"].endswith("name contains 'O\\'Brien'")

    def test_remote_failure_is_500_with_payload(self, client, profile, drive_tree):
        drive_tree.list_status = 500
        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 500
        body = resp.json()
        assert body["message"] == "Failed to list files"
        assert body["error"]["error"]["code"] == 500

    def test_transport_failure_keeps_listing_message(self, client, profile, drive_tree, monkeypatch):
        def offline(method, url, **kwargs):
            raise requests.ConnectionError("network unreachable")

        monkeypatch.setattr(requests, "request", offline)

        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "message": "Failed to list files",
            "error": "network unreachable",
        }

    def test_refresh_failure_is_500(self, client, profile, drive_tree):
        drive_tree.token_error = {"error": "invalid_grant"}
        resp = client.get("/api/google/list", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 500
        assert resp.json()["message"] == "Failed to refresh token"
        assert drive_tree.calls == []


# ─── Upload ───────────────────────────────────────────────────────────────────


class TestUpload:
    def upload(self, client, **fields):
        body = {"userId": USER_ID, "name": "a.pdf", "mimeType": "application/pdf", "data": b64(b"%PDF-1.7")}
        body.update(fields)
        return client.post("/api/google/upload", json=body, headers=ADMIN_HEADERS)

    def test_defaults_to_app_folder_without_walk(self, client, profile, drive_tree):
        resp = self.upload(client)

        assert resp.status_code == 200
        file = resp.json()["file"]
        assert file["parents"] == [APP_FOLDER_ID]
        assert drive_tree.parent_lookups() == []
        assert drive_tree.content[file["id"]] == b"%PDF-1.7"

    def test_nested_target_two_hops_down(self, client, profile, drive_tree):
        resp = self.upload(client, parentId="deep")

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["file"]["parents"] == ["deep"]
        assert drive_tree.parent_lookups() == ["deep", "sub"]
        file_id = resp.json()["file"]["id"]
        assert len(drive_tree.calls_to("POST", f"/{file_id}/permissions")) == 1

    def test_permission_failure_does_not_fail_upload(self, client, profile, drive_tree):
        drive_tree.permission_status = 403

        resp = self.upload(client, parentId="deep")

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert len(drive_tree.calls_to("POST", "/permissions")) == 1

    def test_out_of_scope_target_is_403_without_upload(self, client, profile, drive_tree):
        resp = self.upload(client, parentId="outside")

        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Target parent not allowed"}
        assert drive_tree.calls_to("POST", "/upload/") == []

    def test_metadata_and_bytes_sent_as_multipart(self, client, profile, drive_tree):
        payload = bytes(range(200))
        self.upload(client, data=b64(payload), parentId="sub")

        call = drive_tree.calls_to("POST", "/upload/")[0]
        boundary = call.headers["Content-Type"].split("boundary=", 1)[1]
        (_, meta), (_, data) = parse_multipart(call.data, boundary)
        assert json.loads(meta) == {"name": "a.pdf", "mimeType": "application/pdf", "parents": ["sub"]}
        assert data == payload

    def test_data_url_prefix_accepted(self, client, profile, drive_tree):
        resp = self.upload(client, data="data:application/pdf;base64," + b64(b"abc"))
        assert resp.status_code == 200
        assert drive_tree.content[resp.json()["file"]["id"]] == b"abc"

    def test_line_wrapped_base64_accepted(self, client, profile, drive_tree):
        payload = bytes(range(256)) * 2
        wrapped = base64.encodebytes(payload).decode()
        assert "\n" in wrapped

        resp = self.upload(client, data=wrapped)

        assert resp.status_code == 200
        assert drive_tree.content[resp.json()["file"]["id"]] == payload

    def test_unpadded_base64_accepted(self, client, profile, drive_tree):
        resp = self.upload(client, data="YWI")

        assert resp.status_code == 200
        assert drive_tree.content[resp.json()["file"]["id"]] == b"ab"

    def test_invalid_base64_is_400(self, client, profile, drive_tree):
        resp = self.upload(client, data="not base64!!")
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid base64 data"
        assert drive_tree.calls_to("POST", "/upload/") == []

    def test_missing_fields_is_400(self, client, profile, drive_tree):
        resp = client.post("/api/google/upload", json={"userId": USER_ID}, headers=ADMIN_HEADERS)
        assert resp.status_code == 400
        assert resp.json()["message"] == "userId, name and data required"

    def test_no_target_folder_is_400(self, client, db_session, profile, drive_tree):
        profile.google_app_folder_id = None
        db_session.commit()
        drive_tree.list_status = 500  # app folder cannot be resolved

        resp = self.upload(client)

        assert resp.status_code == 400
        assert resp.json()["message"] == "No target folder available for upload"

    def test_upload_failure_is_500(self, client, profile, drive_tree):
        drive_tree.upload_status = 500
        resp = self.upload(client)

        assert resp.status_code == 500
        assert resp.json()["message"] == "Upload failed"
        assert drive_tree.calls_to("POST", "/permissions") == []

    def test_upload_transport_failure_is_500(self, client, profile, drive_tree, monkeypatch):
        def unreachable_upload(method, url, **kwargs):
            if "/upload/" in url:
                raise requests.ConnectionError("connection reset")
            return drive_tree.request(method, url, **kwargs)

        monkeypatch.setattr(requests, "request", unreachable_upload)

        resp = self.upload(client)

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Upload failed", "error": "connection reset"}


# ─── Download ─────────────────────────────────────────────────────────────────


class TestDownload:
    def download(self, client, file_id):
        return client.get(
            "/api/google/download",
            params={"userId": USER_ID, "fileId": file_id},
            headers=ADMIN_HEADERS,
        )

    def test_binary_file(self, client, profile, drive_tree):
        resp = self.download(client, "doc-deep")

        assert resp.status_code == 200
        assert resp.content == b"%PDF-1.4 deep"
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"] == 'attachment; filename="report.pdf"'

    def test_native_presentation_exported_as_pptx(self, client, profile, drive_tree):
        pptx = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
        drive_tree.add("slides", "Deck", ["sub"], "application/vnd.google-apps.presentation")

        resp = self.download(client, "slides")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == pptx
        assert resp.content == b"exported:" + pptx.encode()
        assert resp.headers["content-disposition"] == 'attachment; filename="Deck"'

    def test_non_latin_filename(self, client, profile, drive_tree):
        drive_tree.add("jp", "報告.pdf", ["F1"], content=b"x")

        resp = self.download(client, "jp")

        assert resp.status_code == 200
        assert "filename*=UTF-8''%E5%A0%B1%E5%91%8A.pdf" in resp.headers["content-disposition"]

    def test_out_of_scope_is_403(self, client, profile, drive_tree):
        resp = self.download(client, "doc-outside")

        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "file not allowed"}
        assert not any(c.params.get("alt") == "media" for c in drive_tree.calls)

    def test_metadata_failure_is_500(self, client, profile, drive_tree, monkeypatch):
        drive_tree.add("gone", "gone.pdf", ["F1"])

        # Parent walk succeeds, then the file disappears before the metadata fetch
        def flaky(method, url, **kwargs):
            if (kwargs.get("params") or {}).get("fields") == "id,name,mimeType":
                drive_tree.unreadable.add("gone")
            return drive_tree.request(method, url, **kwargs)

        monkeypatch.setattr(requests, "request", flaky)

        resp = self.download(client, "gone")

        assert resp.status_code == 500
        assert resp.json()["message"] == "Failed to fetch file metadata"
        assert resp.json()["error"]["error"]["code"] == 404

    def test_media_failure_is_500_with_payload(self, client, profile, drive_tree):
        drive_tree.media_status = 403

        resp = self.download(client, "doc-deep")

        assert resp.status_code == 500
        assert resp.json()["message"] == "Download failed"
        assert resp.json()["error"]["error"]["code"] == 403

    def test_missing_params_is_400(self, client, profile, drive_tree):
        resp = client.get("/api/google/download", params={"userId": USER_ID}, headers=ADMIN_HEADERS)
        assert resp.status_code == 400


# ─── Delete ───────────────────────────────────────────────────────────────────


class TestDelete:
    def delete(self, client, file_id):
        return client.post(
            "/api/google/delete",
            json={"userId": USER_ID, "fileId": file_id},
            headers=ADMIN_HEADERS,
        )

    def test_delete_inside_app_folder(self, client, profile, drive_tree):
        resp = self.delete(client, "doc-deep")

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert "doc-deep" not in drive_tree.files

    def test_out_of_scope_is_403_without_delete(self, client, profile, drive_tree):
        resp = self.delete(client, "doc-outside")

        assert resp.status_code == 403
        assert drive_tree.calls_to("DELETE") == []
        assert "doc-outside" in drive_tree.files

    def test_forbidden_by_drive_gives_scope_hint(self, client, profile, drive_tree):
        drive_tree.delete_status = 403

        resp = self.delete(client, "doc-top")

        assert resp.status_code == 403
        assert resp.json()["message"] == DELETE_FORBIDDEN_MESSAGE
        assert "error" in resp.json()

    def test_other_failure_is_generic_500(self, client, profile, drive_tree):
        drive_tree.delete_status = 500

        resp = self.delete(client, "doc-top")

        assert resp.status_code == 500
        assert resp.json()["message"] == "Delete failed"

    def test_transport_failure_keeps_delete_message(self, client, profile, drive_tree, monkeypatch):
        def drop_delete(method, url, **kwargs):
            if method == "DELETE":
                raise requests.ConnectionError("connection reset")
            return drive_tree.request(method, url, **kwargs)

        monkeypatch.setattr(requests, "request", drop_delete)

        resp = self.delete(client, "doc-top")

        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Delete failed", "error": "connection reset"}
        assert "doc-top" in drive_tree.files


# ─── Folders and quota ────────────────────────────────────────────────────────


class TestCreateFolderAndStorage:
    def test_create_folder_defaults_to_app_folder(self, client, profile, drive_tree):
        resp = client.post(
            "/api/google/create-folder",
            json={"userId": USER_ID, "folderName": "Invoices"},
            headers=ADMIN_HEADERS,
        )

        assert resp.status_code == 200
        folder = resp.json()["folder"]
        assert folder["name"] == "Invoices"
        assert folder["parents"] == [APP_FOLDER_ID]

    def test_create_folder_outside_is_403(self, client, profile, drive_tree):
        resp = client.post(
            "/api/google/create-folder",
            json={"userId": USER_ID, "folderName": "x", "parentId": "outside"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == 403
        assert drive_tree.calls_to("POST", DRIVE_FILES_URL) == []

    def test_storage_quota(self, client, profile, drive_tree):
        resp = client.get("/api/google/storage", params={"userId": USER_ID}, headers=ADMIN_HEADERS)

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "storageQuota": {"limit": "16106127360", "usage": "1024"},
        }


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
