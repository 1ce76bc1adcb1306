"""Repository behaviour against a real SQLite database."""

from spotterlog.models import EnrichmentStatus, ROLE_USER, ROLE_ADMIN
from spotterlog.repositories import UserRoleRepository


class TestSightingRepository:
    def test_update_enrichment_keeps_concurrent_edits(self, sighting_repo, make_sighting) -> None:
        sighting = make_sighting(notes='before')

        # The owner edits while an attempt holding an older copy is running
        edited = sighting_repo.get(sighting.id)
        edited.notes = 'edited'
        sighting_repo.save(edited)

        assert sighting_repo.update_enrichment(sighting.id, EnrichmentStatus.ENRICHED, airline='British Airways')

        stored = sighting_repo.get(sighting.id)
        assert stored.notes == 'edited'
        assert stored.airline == 'British Airways'
        assert stored.enrichment_status is EnrichmentStatus.ENRICHED

    def test_update_enrichment_on_deleted_sighting(self, sighting_repo, make_sighting) -> None:
        sighting = make_sighting()
        sighting_repo.delete(sighting)

        assert sighting_repo.update_enrichment(sighting.id, EnrichmentStatus.FAILED) is False

    def test_empty_page(self, sighting_repo) -> None:
        page = sighting_repo.list_all(0, 10)

        assert page.items == []
        assert page.total == 0
        assert page.total_pages == 0


class TestOpenSkyCacheRepository:
    def test_upsert_replaces_row(self, cache_repo) -> None:
        cache_repo.upsert('abc', 'one', 100.0)
        cache_repo.upsert('abc', 'two', 200.0)

        row = cache_repo.find_by_hash('abc')
        assert (row.response, row.expires_at) == ('two', 200.0)
        assert cache_repo.count() == 1

    def test_unknown_hash(self, cache_repo) -> None:
        assert cache_repo.find_by_hash('missing') is None


class TestUserRoleRepository:
    def test_defaults_to_user(self, session_factory) -> None:
        assert UserRoleRepository(session_factory).get_role('nobody') == ROLE_USER

    def test_granted_role_is_normalised(self, session_factory, grant_role) -> None:
        grant_role('root', 'admin')

        assert UserRoleRepository(session_factory).get_role('root') == ROLE_ADMIN
