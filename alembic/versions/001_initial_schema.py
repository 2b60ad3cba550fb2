"""Initial schema: profiles, posts, engagement edges, conversations, notifications, moderation.

Every "at most one" rule is a UNIQUE constraint; counters are derived, never stored.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Profiles ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id BIGSERIAL PRIMARY KEY,
            username VARCHAR(64) UNIQUE NOT NULL,
            full_name VARCHAR(128),
            avatar_url TEXT,
            cover_url TEXT,
            bio VARCHAR(500),
            university VARCHAR(128),
            career VARCHAR(128),
            semester VARCHAR(16),
            role VARCHAR(16) NOT NULL DEFAULT 'user',
            is_banned BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Posts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS posts (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            content TEXT NOT NULL DEFAULT '',
            post_type VARCHAR(32) NOT NULL DEFAULT 'text',
            media_url TEXT,
            media_type VARCHAR(16),
            visibility VARCHAR(16) NOT NULL DEFAULT 'public',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_posts_post_type
                CHECK (post_type IN ('text', 'idea', 'proyecto', 'equipo', 'evento', 'academic_event'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_posts_created ON posts(created_at)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_posts_user_id ON posts(user_id)")

    # --- Comments (one level of replies) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS comments (
            id BIGSERIAL PRIMARY KEY,
            post_id BIGINT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            parent_id BIGINT REFERENCES comments(id) ON DELETE CASCADE,
            content TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            edited_at TIMESTAMPTZ,
            deleted_at TIMESTAMPTZ,
            CONSTRAINT ck_comments_not_self_parent CHECK (parent_id IS NULL OR parent_id <> id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_comments_post_created ON comments(post_id, created_at)")

    # --- Reactions (post xor comment) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reactions (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            post_id BIGINT REFERENCES posts(id) ON DELETE CASCADE,
            comment_id BIGINT REFERENCES comments(id) ON DELETE CASCADE,
            reaction_type VARCHAR(16) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_reactions_user_post UNIQUE (user_id, post_id),
            CONSTRAINT uq_reactions_user_comment UNIQUE (user_id, comment_id),
            CONSTRAINT ck_reactions_single_target CHECK ((post_id IS NULL) <> (comment_id IS NULL)),
            CONSTRAINT ck_reactions_type CHECK (reaction_type IN ('like', 'love', 'idea', 'fire'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_reactions_post_id ON reactions(post_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_reactions_comment_id ON reactions(comment_id)")

    # --- Edges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS saved_posts (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            post_id BIGINT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_saved_posts_user_post UNIQUE (user_id, post_id)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS followers (
            id BIGSERIAL PRIMARY KEY,
            follower_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            following_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_followers_pair UNIQUE (follower_id, following_id),
            CONSTRAINT ck_followers_no_self_follow CHECK (follower_id <> following_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_followers_follower_id ON followers(follower_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_followers_following_id ON followers(following_id)")
    op.execute("""
        CREATE TABLE IF NOT EXISTS idea_participants (
            id BIGSERIAL PRIMARY KEY,
            post_id BIGINT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_idea_participants_post_user UNIQUE (post_id, user_id)
        )
    """)

    # --- Conversations ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS conversations (
            id BIGSERIAL PRIMARY KEY,
            is_group_chat BOOLEAN NOT NULL DEFAULT false,
            name VARCHAR(128),
            pair_low BIGINT,
            pair_high BIGINT,
            last_message_at TIMESTAMPTZ,
            last_message_preview VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_conversations_pair UNIQUE (pair_low, pair_high),
            CONSTRAINT ck_conversations_pair_order CHECK (pair_low IS NULL OR pair_low < pair_high)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS conversation_participants (
            id BIGSERIAL PRIMARY KEY,
            conversation_id BIGINT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            last_read_at TIMESTAMPTZ,
            is_muted BOOLEAN NOT NULL DEFAULT false,
            CONSTRAINT uq_conversation_participants UNIQUE (conversation_id, user_id)
        )
    """)
    op.execute(
        "CREATE INDEX IF NOT EXISTS idx_conversation_participants_user ON conversation_participants(user_id)"
    )
    op.execute("""
        CREATE TABLE IF NOT EXISTS messages (
            id BIGSERIAL PRIMARY KEY,
            conversation_id BIGINT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            sender_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            content TEXT NOT NULL DEFAULT '',
            image_url TEXT,
            client_token VARCHAR(64),
            is_read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            edited_at TIMESTAMPTZ,
            deleted_at TIMESTAMPTZ,
            CONSTRAINT uq_messages_client_token UNIQUE (conversation_id, sender_id, client_token)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_messages_conversation_order
        ON messages(conversation_id, created_at, id)
    """)
    op.execute("CREATE INDEX IF NOT EXISTS idx_messages_unread ON messages(conversation_id, is_read)")

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            receiver_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            sender_id BIGINT REFERENCES profiles(id) ON DELETE SET NULL,
            type VARCHAR(16) NOT NULL,
            message TEXT NOT NULL,
            post_id BIGINT REFERENCES posts(id) ON DELETE CASCADE,
            comment_id BIGINT REFERENCES comments(id) ON DELETE CASCADE,
            conversation_id BIGINT REFERENCES conversations(id) ON DELETE CASCADE,
            event_key VARCHAR(128) NOT NULL,
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_notifications_receiver_event UNIQUE (receiver_id, event_key),
            CONSTRAINT ck_notifications_type
                CHECK (type IN ('like', 'comment', 'follow', 'join', 'mention', 'reaction', 'message'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_receiver_created
        ON notifications(receiver_id, created_at)
    """)

    # --- Moderation ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS post_reports (
            id BIGSERIAL PRIMARY KEY,
            post_id BIGINT NOT NULL REFERENCES posts(id) ON DELETE CASCADE,
            reporter_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            reason VARCHAR(500) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            reviewed_by BIGINT REFERENCES profiles(id),
            reviewed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_post_reports_post_reporter UNIQUE (post_id, reporter_id),
            CONSTRAINT ck_post_reports_status CHECK (status IN ('pending', 'resolved', 'dismissed'))
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_bans (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
            banned_by BIGINT NOT NULL REFERENCES profiles(id),
            reason VARCHAR(500) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_user_bans_user_id ON user_bans(user_id)")


def downgrade() -> None:
    for table in (
        "user_bans",
        "post_reports",
        "notifications",
        "messages",
        "conversation_participants",
        "conversations",
        "idea_participants",
        "followers",
        "saved_posts",
        "reactions",
        "comments",
        "posts",
        "profiles",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
