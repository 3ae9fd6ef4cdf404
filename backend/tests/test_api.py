"""
CosmoCard Backend — API Integration Tests
===========================================

What:  The web form flow end to end over HTTP: sign in, then walk one card
       through every stage.
How:   HTTPX AsyncClient against the real app with the registry on SQLite and
       Drive/Sheets/Gemini replaced by in-memory fakes (see conftest).

Test Strategy:
    ✅ Registration code → token → card create → label → info → INCI → photos
    ✅ Error envelope for 400 / 401 / 404 / 409
    ✅ Webhook import, batch scheduling, health
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cosmocard.config import settings
from cosmocard.services import sheet_layout as layout
from cosmocard.services.llm_base import LabelAnalysis


async def sign_in(client, email="anna@example.com", name="Anna") -> dict:
    sent = await client.post(
        "/api/auth/register/email/send-code", json={"email": email, "name": name}
    )
    assert sent.status_code == 200
    code = sent.json()["code"]
    verified = await client.post(
        "/api/auth/register/email/verify", json={"email": email, "code": code}
    )
    assert verified.status_code == 200
    return {"Authorization": f"Bearer {verified.json()['token']}"}


async def create_card(client, headers, name="Test Cream") -> dict:
    response = await client.post(
        "/api/cards/create",
        json={"productName": name, "purpose": "Увлажнение", "application": "Утром"},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestAuthFlow:
    @pytest.mark.asyncio
    async def test_send_code_echoes_code_outside_production(self, test_client):
        response = await test_client.post(
            "/api/auth/register/email/send-code",
            json={"email": "anna@example.com", "name": "Anna"},
        )

        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Код создан"
        assert len(body["code"]) == 6

    @pytest.mark.asyncio
    async def test_verify_returns_token_and_user(self, test_client):
        sent = await test_client.post(
            "/api/auth/register/email/send-code",
            json={"email": "anna@example.com", "name": "Anna"},
        )
        response = await test_client.post(
            "/api/auth/register/email/verify",
            json={"email": "anna@example.com", "code": sent.json()["code"]},
        )

        body = response.json()
        assert body["user"]["email"] == "anna@example.com"
        assert body["user"]["userId"].endswith("_WF-0001")

        check = await test_client.post("/api/auth/verify-token", json={"token": body["token"]})
        assert check.status_code == 200
        assert check.json()["user"]["userId"] == body["user"]["userId"]

    @pytest.mark.asyncio
    async def test_wrong_code_is_401(self, test_client):
        await test_client.post(
            "/api/auth/register/email/send-code",
            json={"email": "anna@example.com", "name": "Anna"},
        )
        response = await test_client.post(
            "/api/auth/register/email/verify",
            json={"email": "anna@example.com", "code": "000000"},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "auth_error"

    @pytest.mark.asyncio
    async def test_login_for_unknown_email_is_404(self, test_client):
        response = await test_client.post("/api/auth/login/email", json={"email": "x@example.com"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_login_after_registration(self, test_client):
        await sign_in(test_client)

        sent = await test_client.post("/api/auth/login/email", json={"email": "anna@example.com"})
        response = await test_client.post(
            "/api/auth/login/email/verify",
            json={"email": "anna@example.com", "code": sent.json()["code"]},
        )

        assert response.status_code == 200
        assert response.json()["user"]["name"] == "Anna"


class TestCardFlow:
    @pytest.mark.asyncio
    async def test_full_card_flow(self, test_client, fake_sheets, fake_drive, fake_llm, sample_image_bytes):
        headers = await sign_in(test_client)

        created = await create_card(test_client, headers)
        card_id = created["cardId"]
        assert card_id.endswith("-C0001")
        assert created["stage"] == "created"
        assert created["folderUrl"].endswith(created["cardFolderId"])
        row_number = created["sheetRow"]
        assert fake_sheets.row(row_number)["product_name"] == "Test Cream"

        label = await test_client.post(
            f"/api/cards/{card_id}/label",
            files={"labelFile": ("label.txt", "Назначение: Увлажнение".encode("utf-8"), "text/plain")},
            headers=headers,
        )
        assert label.status_code == 200, label.text
        assert label.json()["aiAvailable"] is True
        assert label.json()["stage"] == "label_processed"
        assert fake_llm.calls[0]["text"] == "Назначение: Увлажнение"

        info = await test_client.patch(
            f"/api/cards/{card_id}/info",
            json={"purpose": "Питание", "application": "Вечером"},
            headers=headers,
        )
        assert info.status_code == 200
        assert fake_sheets.row(row_number)["purpose"] == "Питание"

        inci = await test_client.post(
            f"/api/cards/{card_id}/inci",
            files={"inciFile": ("inci.txt", b"Aqua, Glycerin 5%", "text/plain")},
            data={"keepPercentages": "true"},
            headers=headers,
        )
        assert inci.status_code == 200, inci.text
        body = inci.json()
        assert body["inciText"] == "Aqua, Glycerin 5%"
        assert body["aiResults"]["fullComposition"]["en"] == "Aqua, Glycerin 5%"
        assert fake_llm.calls[-1]["keep_percentages"] is True
        assert fake_sheets.row(row_number)["active_ingredients_en"] == "Glycerin"

        photos = await test_client.post(
            f"/api/cards/{card_id}/photos",
            files=[
                ("photos", ("front.jpg", sample_image_bytes, "image/jpeg")),
                ("photos", ("back.jpg", sample_image_bytes, "image/jpeg")),
            ],
            headers=headers,
        )
        assert photos.status_code == 200, photos.text
        assert photos.json()["count"] == 2
        assert len(fake_drive.children(created["photosFolderId"])) == 2

        card = await test_client.get(f"/api/cards/{card_id}", headers=headers)
        assert card.status_code == 200
        assert card.json()["stage"] == "photos_uploaded"
        assert card.json()["aiStatus"] == "completed"

    @pytest.mark.asyncio
    async def test_pdf_label_suggestion_persists(
        self, test_client, fake_sheets, fake_drive, fake_llm, sample_pdf_bytes, sample_image_bytes
    ):
        fake_llm.label_result = LabelAnalysis(
            label_info="Moisturizing face cream",
            suggested_purpose="Увлажнение",
            suggested_application="Наносить утром",
        )
        headers = await sign_in(test_client)
        created = await test_client.post(
            "/api/cards/create",
            json={"productName": "Test Cream", "purpose": "Питание", "application": "Вечером"},
            headers=headers,
        )
        assert created.status_code == 201, created.text
        card_id = created.json()["cardId"]
        row_number = created.json()["sheetRow"]

        label = await test_client.post(
            f"/api/cards/{card_id}/label",
            files={"labelFile": ("label.pdf", sample_pdf_bytes, "application/pdf")},
            headers=headers,
        )
        assert label.status_code == 200, label.text
        assert label.json()["aiSuggestions"]["purpose"] == "Увлажнение"
        assert label.json()["purpose"] == "Увлажнение"
        # Text layer extracted, so the PDF is not also sent as an attachment
        assert "Purpose: Moisturizing" in fake_llm.calls[0]["text"]
        assert fake_llm.calls[0]["attachments"] == []
        uploaded = fake_drive.children(created.json()["cardFolderId"])
        assert any(item["name"] == "Этикетка Test Cream.pdf" for item in uploaded)

        card = await test_client.get(f"/api/cards/{card_id}", headers=headers)
        assert card.json()["purpose"] == "Увлажнение"
        assert fake_sheets.row(row_number)["purpose"] == "Увлажнение"

        info = await test_client.patch(
            f"/api/cards/{card_id}/info",
            json={"purpose": "Увлажнение", "application": "Наносить утром"},
            headers=headers,
        )
        assert info.status_code == 200, info.text
        assert info.json()["purpose"] == "Увлажнение"
        card = await test_client.get(f"/api/cards/{card_id}", headers=headers)
        assert card.json()["purpose"] == "Увлажнение"
        assert fake_sheets.row(row_number)["purpose"] == "Увлажнение"

        inci = await test_client.post(
            f"/api/cards/{card_id}/inci",
            files={"inciFile": ("inci.txt", b"Aqua, Glycerin 5%", "text/plain")},
            headers=headers,
        )
        assert inci.status_code == 200, inci.text
        results = inci.json()["aiResults"]
        assert results["fullComposition"]["ru"]
        assert results["activeIngredients"]["ru"]
        assert "Вода" not in results["activeIngredients"]["ru"]

        photos = await test_client.post(
            f"/api/cards/{card_id}/photos",
            files=[
                ("photos", ("front.jpg", sample_image_bytes, "image/jpeg")),
                ("photos", ("back.jpg", sample_image_bytes, "image/jpeg")),
            ],
            headers=headers,
        )
        assert photos.status_code == 200, photos.text
        assert photos.json()["count"] == 2

    @pytest.mark.asyncio
    async def test_label_text_and_rename(self, test_client, fake_sheets, fake_drive):
        headers = await sign_in(test_client)
        created = await create_card(test_client, headers)
        card_id = created["cardId"]

        label = await test_client.post(
            f"/api/cards/{card_id}/label-text",
            json={"labelText": "Объём 50 мл"},
            headers=headers,
        )
        assert label.status_code == 200

        renamed = await test_client.patch(
            f"/api/cards/{card_id}/name", json={"newName": "Night Cream"}, headers=headers
        )
        assert renamed.status_code == 200
        assert renamed.json()["productName"] == "Night Cream"
        assert fake_sheets.row(created["sheetRow"])["product_name"] == "Night Cream"
        assert fake_drive.items[created["cardFolderId"]]["name"] == renamed.json()["folderName"]

    @pytest.mark.asyncio
    async def test_feedback(self, test_client):
        headers = await sign_in(test_client)
        created = await create_card(test_client, headers)

        response = await test_client.post(
            f"/api/cards/{created['cardId']}/feedback",
            json={"resultType": "inci", "feedback": "Неверный перевод"},
            headers=headers,
        )

        assert response.status_code == 201
        assert response.json()["success"] is True


class TestErrorEnvelope:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, test_client):
        response = await test_client.post("/api/cards/create", json={"productName": "Cream"})

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "auth_error"
        assert body["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_malformed_header_is_401(self, test_client):
        response = await test_client.get(
            "/api/cards/CARD-1", headers={"Authorization": "Token abc"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_product_name_is_400(self, test_client):
        headers = await sign_in(test_client)

        response = await test_client.post(
            "/api/cards/create", json={"purpose": "x", "application": "y"}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_card_is_404(self, test_client):
        headers = await sign_in(test_client)
        response = await test_client.get("/api/cards/CARD-missing", headers=headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_users_card_is_404(self, test_client):
        owner = await sign_in(test_client)
        created = await create_card(test_client, owner)
        stranger = await sign_in(test_client, email="boris@example.com", name="Boris")

        response = await test_client.get(f"/api/cards/{created['cardId']}", headers=stranger)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_inci_before_label_is_409(self, test_client):
        headers = await sign_in(test_client)
        created = await create_card(test_client, headers)

        response = await test_client.post(
            f"/api/cards/{created['cardId']}/inci",
            files={"inciFile": ("inci.txt", b"Aqua", "text/plain")},
            headers=headers,
        )

        assert response.status_code == 409
        assert response.json()["code"] == "stale_stage"

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get(
            "/api/cards/CARD-1", headers={"X-Request-ID": "abc12345"}
        )
        assert response.headers["X-Request-ID"] == "abc12345"
        assert response.json()["request_id"] == "abc12345"


class TestWebhookAndBatch:
    @pytest.mark.asyncio
    async def test_webhook_creates_card(self, test_client, fake_sheets):
        response = await test_client.post(
            "/webhook",
            json={"chatId": "123456", "productName": "Крем", "inci": "Aqua, Glycerin"},
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["cardId"].startswith("CARD-U")
        row = fake_sheets.row(body["sheetRow"])
        assert row["inci_text"] == "Aqua, Glycerin"
        assert all(row[field] == "" for field in layout.AI_FIELDS)

    @pytest.mark.asyncio
    async def test_webhook_accepts_numeric_chat_id(self, test_client):
        first = await test_client.post("/webhook", json={"chatId": 123456789, "productName": "Cream"})
        second = await test_client.post("/webhook", json={"chatId": "123456789", "productName": "Serum"})

        assert first.status_code == 200, first.text
        assert second.status_code == 200, second.text
        # Number and string resolve to the same Telegram user
        assert first.json()["cardId"].endswith("-C0001")
        assert second.json()["cardId"].endswith("-C0002")
        assert first.json()["cardId"][:-6] == second.json()["cardId"][:-6]

    @pytest.mark.asyncio
    async def test_webhook_secret_enforced(self, test_client, monkeypatch):
        monkeypatch.setattr(settings, "webhook_secret", "s3cret")

        rejected = await test_client.post("/webhook", json={"chatId": "1", "productName": "Крем"})
        accepted = await test_client.post(
            "/webhook",
            json={"chatId": "1", "productName": "Крем"},
            headers={"X-Webhook-Secret": "s3cret"},
        )

        assert rejected.status_code == 401
        assert accepted.status_code == 200

    @pytest.mark.asyncio
    async def test_process_batch_scheduled(self, test_client):
        from cosmocard.dependencies import get_batch_service
        from cosmocard.main import app

        batch = MagicMock()
        batch.process_pending = AsyncMock(return_value={"processed": 0, "skipped": 0, "errors": 0})
        app.dependency_overrides[get_batch_service] = lambda: batch

        response = await test_client.post("/process-batch")

        assert response.status_code == 202
        assert response.json()["success"] is True
        batch.process_pending.assert_awaited_once()


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, test_client):
        with patch(
            "cosmocard.routes.health.gemini_service.health_check",
            AsyncMock(return_value=True),
        ):
            response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["database"] == "connected"
        assert body["status"] in ("healthy", "degraded")
