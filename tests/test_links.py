"""Tests for direct links: /raw, /i and /embed."""
import pytest

API = "/api/v1/pastes"


async def create_paste(client, headers, **fields):
    response = await client.post(f"{API}/create", json={"content": "hello", **fields}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["paste_id"]


class TestRawLink:
    @pytest.mark.asyncio
    async def test_raw(self, client, auth_headers):
        paste_id = await create_paste(client, auth_headers, content="a < b")
        response = await client.get(f"/raw/{paste_id}")
        assert response.status_code == 200
        assert response.text == "a < b"
        assert "X-RateLimit-Limit" not in response.headers

    @pytest.mark.asyncio
    async def test_raw_counts_view_and_burns(self, client, auth_headers):
        paste_id = await create_paste(client, auth_headers, burn_after_read=True)
        assert (await client.get(f"/raw/{paste_id}")).status_code == 200
        assert (await client.get(f"/raw/{paste_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_raw_protected(self, client, auth_headers):
        paste_id = await create_paste(client, auth_headers, password="pw")
        response = await client.get(f"/raw/{paste_id}")
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_raw_missing(self, client):
        response = await client.get("/raw/deadbeef")
        assert response.status_code == 404
        assert response.json() == {"error": "Share not found", "kind": "not_found"}

    @pytest.mark.asyncio
    async def test_raw_refuses_file_share(self, client, auth_headers):
        upload = await client.post(
            f"{API}/upload",
            files={"file": ("dot.gif", b"GIF89a", "image/gif")},
            data={"burn_after_read": "true"},
            headers=auth_headers,
        )
        paste_id = upload.json()["paste_id"]

        response = await client.get(f"/raw/{paste_id}")
        assert response.status_code == 404
        assert (await client.get(f"/i/{paste_id}")).content == b"GIF89a"


class TestImageLink:
    @pytest.mark.asyncio
    async def test_image(self, client, auth_headers):
        upload = await client.post(
            f"{API}/upload",
            files={"file": ("dot.gif", b"GIF89a", "image/gif")},
            headers=auth_headers,
        )
        paste_id = upload.json()["paste_id"]

        response = await client.get(f"/i/{paste_id}")
        assert response.status_code == 200
        assert response.content == b"GIF89a"
        assert response.headers["cache-control"] == "public, max-age=31536000, immutable"

    @pytest.mark.asyncio
    async def test_image_protected(self, client, auth_headers):
        upload = await client.post(
            f"{API}/upload",
            files={"file": ("dot.gif", b"GIF89a", "image/gif")},
            data={"password": "pw"},
            headers=auth_headers,
        )
        assert upload.json()["protected"] is True

        response = await client.get(f"/i/{upload.json()['paste_id']}")
        assert response.status_code == 403


class TestEmbed:
    @pytest.mark.asyncio
    async def test_embed_escapes_content(self, client, auth_headers):
        paste_id = await create_paste(
            client, auth_headers, content="<script>alert(1)</script>", title="x\"y", syntax="html",
        )
        response = await client.get(f"/embed/{paste_id}")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "<script>alert(1)</script>" not in response.text
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text
        assert 'class="language-html"' in response.text
        assert f"https://pastely.test/p/{paste_id}" in response.text

    @pytest.mark.asyncio
    async def test_embed_does_not_count_view(self, client, auth_headers):
        paste_id = await create_paste(client, auth_headers)
        await client.get(f"/embed/{paste_id}")
        view = await client.get(f"{API}/get", params={"id": paste_id})
        assert view.json()["views"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields", [{"password": "pw"}, {"burn_after_read": True}])
    async def test_embed_refused(self, client, auth_headers, fields):
        paste_id = await create_paste(client, auth_headers, **fields)
        response = await client.get(f"/embed/{paste_id}")
        assert response.status_code == 403
