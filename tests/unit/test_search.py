"""Tests for profile/post search, trending hashtags and suggestions."""

from __future__ import annotations

from datetime import timedelta

import pytest

from campusnet.db.base import utcnow
from campusnet.engagement.follows import follow
from campusnet.engagement.reactions import TargetKind, set_reaction
from campusnet.search.service import (
    extract_hashtags,
    search_posts,
    search_profiles,
    suggest_users,
    trending_hashtags,
)
from tests.conftest import auth_header


class TestSearchProfiles:
    @pytest.mark.asyncio
    async def test_matches_username_full_name_and_bio(self, db, make_profile) -> None:
        ana = await make_profile("ana_rios")
        ben = await make_profile("ben", full_name="Benito Rios")
        cai = await make_profile("cai", bio="Rios fan club president")
        await make_profile("dan", bio="chess")

        found = await search_profiles(db, "RIOS")
        assert {p.id for p in found} == {ana.id, ben.id, cai.id}

    @pytest.mark.asyncio
    async def test_filters_narrow_results(self, db, make_profile) -> None:
        await make_profile("ana", university="UNAM", career="Physics")
        ben = await make_profile("anabel", university="UNAM", career="Math", semester="3")
        await make_profile("anita", university="IPN", career="Math")

        found = await search_profiles(db, "an", university="UNAM", career="Math")
        assert [p.id for p in found] == [ben.id]
        assert await search_profiles(db, "an", semester="9") == []

    @pytest.mark.asyncio
    async def test_wildcards_are_literal(self, db, make_profile) -> None:
        await make_profile("ana")
        under = await make_profile("a_b")

        assert [p.id for p in await search_profiles(db, "_")] == [under.id]
        assert await search_profiles(db, "%") == []
        assert await search_profiles(db, "   ") == []


class TestSearchPosts:
    @pytest.mark.asyncio
    async def test_content_match_with_counters(self, db, make_profile, make_post) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben")
        older = await make_post(ana, "Robotics club meets friday")
        newer = await make_post(ana, "new robotics kit arrived", post_type="idea")
        await make_post(ana, "unrelated")
        await set_reaction(db, ben.id, newer.id, TargetKind.POST, "like")
        await db.commit()

        views = await search_posts(db, "robotics", ben.id)
        assert [v.post.id for v in views] == [newer.id, older.id]
        assert views[0].reactions_count == 1
        assert views[0].user_reaction == "like"

        ideas = await search_posts(db, "robotics", ben.id, post_type="idea")
        assert [v.post.id for v in ideas] == [newer.id]


class TestTrendingHashtags:
    def test_extract_hashtags(self) -> None:
        assert extract_hashtags("#Hack and #hack, #ai! not#this #x") == {"hack", "ai"}

    @pytest.mark.asyncio
    async def test_ranked_by_posts_using_tag(self, db, make_profile, make_post) -> None:
        ana = await make_profile("ana")
        await make_post(ana, "#hackathon #ai #ai")
        await make_post(ana, "#hackathon tonight")
        await make_post(ana, "#ai and #robots")
        await make_post(ana, "#zeta")
        old = await make_post(ana, "#zeta #zeta")
        old.created_at = utcnow() - timedelta(days=30)
        await db.commit()

        assert await trending_hashtags(db, limit=3) == [("ai", 2), ("hackathon", 2), ("robots", 1)]


class TestSuggestions:
    @pytest.mark.asyncio
    async def test_same_university_not_already_followed(self, db, make_profile) -> None:
        ana = await make_profile("ana", university="UNAM")
        ben = await make_profile("ben", university="UNAM")
        cai = await make_profile("cai", university="UNAM")
        dan = await make_profile("dan", university="UNAM")
        await make_profile("eve", university="IPN")
        await make_profile("fay", university="UNAM", is_banned=True)
        await follow(db, ana.id, ben.id)
        await follow(db, dan.id, cai.id)
        await db.commit()

        suggestions = await suggest_users(db, ana.id)
        assert [(p.id, n) for p, n in suggestions] == [(cai.id, 1), (dan.id, 0)]

    @pytest.mark.asyncio
    async def test_no_university_suggests_anyone(self, db, make_profile) -> None:
        ana = await make_profile("ana")
        ben = await make_profile("ben", university="IPN")

        assert [p.id for p, _ in await suggest_users(db, ana.id)] == [ben.id]


class TestSearchApi:
    @pytest.mark.asyncio
    async def test_endpoints(self, client, make_profile) -> None:
        ana = await make_profile("ana", university="UNAM")
        ben = await make_profile("ben", university="UNAM", full_name="Ben Campus")
        await client.post("/api/v1/posts", json={"content": "join the #hackathon"}, headers=auth_header(ana))

        resp = await client.get("/api/v1/search/users", params={"q": "campus"}, headers=auth_header(ana))
        assert [u["id"] for u in resp.json()["users"]] == [ben.id]

        resp = await client.get("/api/v1/search/posts", params={"q": "hackathon"}, headers=auth_header(ben))
        assert resp.json()["posts"][0]["user_id"] == ana.id

        resp = await client.get("/api/v1/search/trending", headers=auth_header(ben))
        assert resp.json() == {"hashtags": [{"tag": "hackathon", "posts": 1}]}

        resp = await client.get("/api/v1/search/suggestions", headers=auth_header(ana))
        assert [(u["username"], u["followers"]) for u in resp.json()["users"]] == [("ben", 0)]

    @pytest.mark.asyncio
    async def test_query_required(self, client, make_profile) -> None:
        ana = await make_profile("ana")
        resp = await client.get("/api/v1/search/users", params={"q": ""}, headers=auth_header(ana))
        assert resp.status_code == 422
