"""Tests for article storage queries and duplicate detection."""

import uuid

import pytest

from newsingest.core.crawler.content import compute_content_hash


@pytest.fixture
async def stored(db, job_repo, make_source, article_repo):
    """One stored article for source Alpha."""
    source = await make_source("Alpha", "alpha.example")
    job = await job_repo.create_job(["Alpha"], articles_per_source=5)
    content = "An article body long enough to be worth storing. " * 4
    content_hash = compute_content_hash("Stored", content)
    async with db.get_session() as session:
        async with session.begin():
            article = await article_repo.add_article(session, {
                "source_id": source.id,
                "source_url": "https://alpha.example/stored",
                "title": "Stored",
                "content": content,
                "content_hash": content_hash,
                "job_id": job.id,
                "tracking_id": "t-1",
                "content_length": len(content),
            })
    return source, job, article, content_hash


class TestFindDuplicate:
    async def test_same_url(self, db, article_repo, stored):
        source, _, _, _ = stored

        async with db.get_session() as session:
            reason = await article_repo.find_duplicate(session, source.id, "https://alpha.example/stored", None)

        assert reason == "source_url"

    async def test_same_url_from_another_source(self, db, article_repo, stored):
        async with db.get_session() as session:
            reason = await article_repo.find_duplicate(session, uuid.uuid4(), "https://alpha.example/stored", None)

        assert reason == "source_url"

    async def test_same_content_same_source(self, db, article_repo, stored):
        source, _, _, content_hash = stored

        async with db.get_session() as session:
            reason = await article_repo.find_duplicate(session, source.id, "https://alpha.example/copy", content_hash)

        assert reason == "content_hash"

    async def test_same_content_other_source_is_not_duplicate(self, db, article_repo, stored):
        _, _, _, content_hash = stored

        async with db.get_session() as session:
            reason = await article_repo.find_duplicate(
                session, uuid.uuid4(), "https://beta.example/syndicated", content_hash
            )

        assert reason is None

    async def test_url_match_wins_over_an_earlier_hash_match(self, db, article_repo, stored):
        """Test a URL stored with a different hash is reported as a URL duplicate."""
        # Arrange
        source, job, _, content_hash = stored
        async with db.get_session() as session:
            async with session.begin():
                await article_repo.add_article(session, {
                    "source_id": source.id,
                    "source_url": "https://alpha.example/revised",
                    "title": "Revised",
                    "content": "A later revision of another story with its own body. " * 4,
                    "content_hash": compute_content_hash("Revised", "another body"),
                    "job_id": job.id,
                    "tracking_id": "t-2",
                    "content_length": 200,
                })

        # Act
        async with db.get_session() as session:
            reason = await article_repo.find_duplicate(
                session, source.id, "https://alpha.example/revised", content_hash
            )

        # Assert
        assert reason == "source_url"


class TestCounts:
    async def test_counts_for_job(self, article_repo, stored):
        source, job, article, _ = stored

        assert await article_repo.count_for_job_source(job.id, source.id) == 1
        assert await article_repo.counts_by_source_for_job(job.id) == {source.id: 1}
        assert await article_repo.ids_for_job_source(job.id, source.id) == [article.id]
        assert await article_repo.count_for_job_source(uuid.uuid4(), source.id) == 0

    async def test_existing_urls(self, article_repo, stored):
        existing = await article_repo.existing_urls(["https://alpha.example/stored", "https://alpha.example/new"])

        assert existing == {"https://alpha.example/stored"}
        assert await article_repo.existing_urls([]) == set()
