"""Tests for the catalog, credits and health routers."""

from __future__ import annotations

import pytest
from fakes import FakeEngine
from httpx import AsyncClient


class TestCatalog:
    @pytest.mark.asyncio
    async def test_list_engines(self, client: AsyncClient) -> None:
        resp = await client.get("/catalog/engines")
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()] == ["eeg-test-v1", "mock-test-v1"]

    @pytest.mark.asyncio
    async def test_filter_engines_by_cost(self, client: AsyncClient) -> None:
        resp = await client.get("/catalog/engines", params={"max_cost": 0})
        assert [e["id"] for e in resp.json()] == ["mock-test-v1"]

    @pytest.mark.asyncio
    async def test_filter_engines_by_signal(self, client: AsyncClient) -> None:
        resp = await client.get("/catalog/engines", params=[("data_type", "eeg"), ("data_type", "ppg")])
        assert [e["id"] for e in resp.json()] == ["mock-test-v1"]

    @pytest.mark.asyncio
    async def test_renderers_scoped_to_organization(self, client: AsyncClient) -> None:
        public = await client.get("/catalog/renderers")
        assert "acme-web-v1" not in [r["id"] for r in public.json()]

        acme = await client.get("/catalog/renderers", headers={"X-Organization-ID": "acme"})
        assert "acme-web-v1" in [r["id"] for r in acme.json()]

    @pytest.mark.asyncio
    async def test_compatible_renderers_ranked(self, client: AsyncClient) -> None:
        resp = await client.get("/catalog/engines/eeg-test-v1/renderers")
        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == ["basic-web-v1", "json-export-v1", "web-test-v1"]

    @pytest.mark.asyncio
    async def test_compatible_renderers_unknown_engine(self, client: AsyncClient) -> None:
        resp = await client.get("/catalog/engines/missing-v1/renderers")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_engines_scoped_to_organization(self, client: AsyncClient, service) -> None:
        service.registry.register_engine(FakeEngine("acme-eeg-v1", cost=3, organization_id="acme"))

        public = await client.get("/catalog/engines")
        assert "acme-eeg-v1" not in [e["id"] for e in public.json()]
        filtered = await client.get("/catalog/engines", params={"max_cost": 3})
        assert "acme-eeg-v1" not in [e["id"] for e in filtered.json()]
        other = await client.get("/catalog/engines", headers={"X-Organization-ID": "globex"})
        assert "acme-eeg-v1" not in [e["id"] for e in other.json()]

        acme = await client.get("/catalog/engines", headers={"X-Organization-ID": "acme"})
        assert [e["id"] for e in acme.json()] == ["acme-eeg-v1", "eeg-test-v1", "mock-test-v1"]
        acme_cheap = await client.get(
            "/catalog/engines", params={"max_cost": 3}, headers={"X-Organization-ID": "acme"}
        )
        assert [e["id"] for e in acme_cheap.json()] == ["mock-test-v1", "acme-eeg-v1"]

    @pytest.mark.asyncio
    async def test_compatible_renderers_hidden_engine_is_404(self, client: AsyncClient, service) -> None:
        service.registry.register_engine(FakeEngine("acme-eeg-v1", organization_id="acme"))

        resp = await client.get("/catalog/engines/acme-eeg-v1/renderers")
        assert resp.status_code == 404

        acme = await client.get("/catalog/engines/acme-eeg-v1/renderers", headers={"X-Organization-ID": "acme"})
        assert acme.status_code == 200
        assert "acme-web-v1" in [r["id"] for r in acme.json()]


class TestCredits:
    @pytest.mark.asyncio
    async def test_balance(self, client: AsyncClient, service) -> None:
        await service.open_account("acct-1", 12)
        resp = await client.get("/credits/balance")
        assert resp.status_code == 200
        assert resp.json() == {"account_id": "acct-1", "balance": 12}

    @pytest.mark.asyncio
    async def test_unknown_account_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/credits/balance")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_transactions_after_job(self, client: AsyncClient, completed_job: str) -> None:
        resp = await client.get("/credits/transactions")
        kinds = [tx["kind"] for tx in resp.json()]
        assert kinds == ["CHARGE", "RESERVE", "TOPUP"]

        charges = await client.get("/credits/transactions", params={"kind": "CHARGE"})
        assert [(tx["amount"], tx["amount_signed"]) for tx in charges.json()] == [(7, 0)]
        assert charges.json()[0]["related_job_id"] == completed_job


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["db"] == "ok"
        assert body["engines"] == 2
        assert body["running_jobs"] == 0

    @pytest.mark.asyncio
    async def test_ready(self, client: AsyncClient) -> None:
        resp = await client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ready"
