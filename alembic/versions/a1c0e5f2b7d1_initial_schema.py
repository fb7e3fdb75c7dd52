"""initial schema

Revision ID: a1c0e5f2b7d1
Revises:
Create Date: 2026-10-19 09:00:00.000000

Hey future me - this is the BASELINE. Every cached entity table is keyed by
(id, stash_instance_id) and every junction carries both sides' instance ids.
If you add a column to models.py, add a new revision, don't edit this one.

TABLE GROUPS:
- stash_instances: upstream servers
- stash_*: seven cached entity tables (soft delete via deleted_at)
- 12 junction tables
- sync_state / sync_settings
- users and per-user tables (hidden, excluded, restrictions, ratings,
  watch history, derived stats, rankings)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'a1c0e5f2b7d1'
down_revision = None
branch_labels = None
depends_on = None


# (table, owner, target) - column names follow "<side>_id" / "<side>_instance_id"
JUNCTIONS = [
    ('scene_performers', 'scene', 'performer'),
    ('scene_tags', 'scene', 'tag'),
    ('scene_groups', 'scene', 'group'),
    ('scene_galleries', 'scene', 'gallery'),
    ('image_performers', 'image', 'performer'),
    ('image_tags', 'image', 'tag'),
    ('image_galleries', 'image', 'gallery'),
    ('gallery_performers', 'gallery', 'performer'),
    ('gallery_tags', 'gallery', 'tag'),
    ('performer_tags', 'performer', 'tag'),
    ('studio_tags', 'studio', 'tag'),
    ('group_tags', 'group', 'tag'),
]

RATED = ['scene', 'performer', 'studio', 'tag', 'group', 'gallery', 'image']
STATS = ['performer', 'studio', 'tag']


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def _entity_columns() -> list[sa.Column]:
    return [
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('stash_instance_id', sa.String(36), primary_key=True, index=True),
        sa.Column('stash_created_at', sa.String(40), nullable=True),
        sa.Column('stash_updated_at', sa.String(40), nullable=True),
        _ts('synced_at'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, index=True),
    ]


def _counts(*names: str) -> list[sa.Column]:
    return [
        sa.Column(n, sa.Integer, nullable=False, server_default='0') for n in names
    ]


def _user_fk() -> sa.Column:
    return sa.Column(
        'user_id',
        sa.Integer,
        sa.ForeignKey('users.id', ondelete='CASCADE'),
        nullable=False,
    )


def upgrade() -> None:
    # === Instances ===
    op.create_table(
        'stash_instances',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('url', sa.String(1024), nullable=False),
        sa.Column('api_key', sa.String(1024), nullable=False, server_default=''),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        _ts('created_at'),
        _ts('updated_at'),
    )
    op.create_index(
        'ix_stash_instances_enabled_priority', 'stash_instances', ['enabled', 'priority']
    )

    # === Cached entities ===
    op.create_table(
        'stash_scenes',
        *_entity_columns(),
        sa.Column('title', sa.Text, nullable=True),
        sa.Column('code', sa.String(255), nullable=True),
        sa.Column('date', sa.String(20), nullable=True),
        sa.Column('studio_id', sa.String(64), nullable=True),
        sa.Column('rating100', sa.Integer, nullable=True),
        sa.Column('duration', sa.Integer, nullable=True),
        sa.Column('organized', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('director', sa.String(255), nullable=True),
        sa.Column('urls', sa.Text, nullable=True),
        sa.Column('file_path', sa.Text, nullable=True),
        sa.Column('file_bit_rate', sa.Integer, nullable=True),
        sa.Column('file_frame_rate', sa.Float, nullable=True),
        sa.Column('file_width', sa.Integer, nullable=True),
        sa.Column('file_height', sa.Integer, nullable=True),
        sa.Column('file_video_codec', sa.String(50), nullable=True),
        sa.Column('file_audio_codec', sa.String(50), nullable=True),
        sa.Column('file_size', sa.BigInteger, nullable=True),
        sa.Column('path_screenshot', sa.Text, nullable=True),
        sa.Column('path_preview', sa.Text, nullable=True),
        sa.Column('path_sprite', sa.Text, nullable=True),
        sa.Column('path_vtt', sa.Text, nullable=True),
        sa.Column('path_stream', sa.Text, nullable=True),
        *_counts('o_counter', 'play_count'),
        sa.Column('play_duration', sa.Float, nullable=False, server_default='0'),
        sa.Column('inherited_tag_ids', sa.Text, nullable=True),
        sa.Column('phash', sa.String(32), nullable=True, index=True),
        sa.Column('phashes', sa.Text, nullable=True),
    )
    op.create_index('ix_stash_scenes_studio', 'stash_scenes', ['studio_id', 'stash_instance_id'])
    op.create_index(
        'ix_stash_scenes_browse_created', 'stash_scenes', ['deleted_at', 'stash_created_at']
    )
    op.create_index('ix_stash_scenes_browse_date', 'stash_scenes', ['deleted_at', 'date'])

    op.create_table(
        'stash_performers',
        *_entity_columns(),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('disambiguation', sa.String(255), nullable=True),
        sa.Column('gender', sa.String(50), nullable=True),
        sa.Column('birthdate', sa.String(20), nullable=True),
        sa.Column('favorite', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('rating100', sa.Integer, nullable=True),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('alias_list', sa.Text, nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('ethnicity', sa.String(100), nullable=True),
        sa.Column('hair_color', sa.String(50), nullable=True),
        sa.Column('eye_color', sa.String(50), nullable=True),
        sa.Column('height_cm', sa.Integer, nullable=True),
        sa.Column('weight_kg', sa.Integer, nullable=True),
        sa.Column('measurements', sa.String(100), nullable=True),
        sa.Column('tattoos', sa.Text, nullable=True),
        sa.Column('piercings', sa.Text, nullable=True),
        sa.Column('career_length', sa.String(100), nullable=True),
        sa.Column('death_date', sa.String(20), nullable=True),
        sa.Column('url', sa.Text, nullable=True),
        sa.Column('image_path', sa.Text, nullable=True),
        sa.Column('stash_ids', sa.Text, nullable=True),
        *_counts('scene_count', 'image_count', 'gallery_count', 'group_count'),
    )
    op.create_index('ix_stash_performers_name', 'stash_performers', ['name'])

    op.create_table(
        'stash_studios',
        *_entity_columns(),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('parent_id', sa.String(64), nullable=True),
        sa.Column('favorite', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('rating100', sa.Integer, nullable=True),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('url', sa.Text, nullable=True),
        sa.Column('image_path', sa.Text, nullable=True),
        sa.Column('stash_ids', sa.Text, nullable=True),
        *_counts(
            'scene_count', 'image_count', 'gallery_count', 'performer_count', 'group_count'
        ),
    )
    op.create_index('ix_stash_studios_name', 'stash_studios', ['name'])

    op.create_table(
        'stash_tags',
        *_entity_columns(),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('favorite', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('aliases', sa.Text, nullable=True),
        sa.Column('parent_ids', sa.Text, nullable=True),
        sa.Column('image_path', sa.Text, nullable=True),
        sa.Column('color', sa.String(20), nullable=True),
        sa.Column('stash_ids', sa.Text, nullable=True),
        *_counts(
            'scene_count',
            'image_count',
            'gallery_count',
            'performer_count',
            'studio_count',
            'group_count',
            'scene_marker_count',
            'scene_count_via_performers',
        ),
    )
    op.create_index('ix_stash_tags_name', 'stash_tags', ['name'])

    op.create_table(
        'stash_groups',
        *_entity_columns(),
        sa.Column('name', sa.String(255), nullable=False, server_default=''),
        sa.Column('date', sa.String(20), nullable=True),
        sa.Column('studio_id', sa.String(64), nullable=True),
        sa.Column('rating100', sa.Integer, nullable=True),
        sa.Column('duration', sa.Integer, nullable=True),
        sa.Column('director', sa.String(255), nullable=True),
        sa.Column('synopsis', sa.Text, nullable=True),
        sa.Column('urls', sa.Text, nullable=True),
        sa.Column('front_image_path', sa.Text, nullable=True),
        sa.Column('back_image_path', sa.Text, nullable=True),
        *_counts('scene_count', 'performer_count'),
    )

    op.create_table(
        'stash_galleries',
        *_entity_columns(),
        sa.Column('title', sa.Text, nullable=True),
        sa.Column('date', sa.String(20), nullable=True),
        sa.Column('studio_id', sa.String(64), nullable=True),
        sa.Column('rating100', sa.Integer, nullable=True),
        sa.Column('cover_image_id', sa.String(64), nullable=True),
        *_counts('image_count'),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('url', sa.Text, nullable=True),
        sa.Column('code', sa.String(255), nullable=True),
        sa.Column('photographer', sa.String(255), nullable=True),
        sa.Column('urls', sa.Text, nullable=True),
        sa.Column('folder_path', sa.Text, nullable=True),
        sa.Column('file_basename', sa.Text, nullable=True),
        sa.Column('cover_path', sa.Text, nullable=True),
    )

    op.create_table(
        'stash_images',
        *_entity_columns(),
        sa.Column('title', sa.Text, nullable=True),
        sa.Column('code', sa.String(255), nullable=True),
        sa.Column('details', sa.Text, nullable=True),
        sa.Column('photographer', sa.String(255), nullable=True),
        sa.Column('urls', sa.Text, nullable=True),
        sa.Column('date', sa.String(20), nullable=True),
        sa.Column('studio_id', sa.String(64), nullable=True),
        sa.Column('rating100', sa.Integer, nullable=True),
        *_counts('o_counter'),
        sa.Column('organized', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('file_path', sa.Text, nullable=True),
        sa.Column('width', sa.Integer, nullable=True),
        sa.Column('height', sa.Integer, nullable=True),
        sa.Column('file_size', sa.BigInteger, nullable=True),
        sa.Column('path_thumbnail', sa.Text, nullable=True),
        sa.Column('path_preview', sa.Text, nullable=True),
        sa.Column('path_image', sa.Text, nullable=True),
    )

    # === Junctions ===
    for table, owner, target in JUNCTIONS:
        extra = [sa.Column('scene_index', sa.Integer, nullable=True)] if table == 'scene_groups' else []
        op.create_table(
            table,
            sa.Column(f'{owner}_id', sa.String(64), primary_key=True),
            sa.Column(f'{owner}_instance_id', sa.String(36), primary_key=True),
            sa.Column(f'{target}_id', sa.String(64), primary_key=True),
            sa.Column(f'{target}_instance_id', sa.String(36), primary_key=True),
            *extra,
        )
        op.create_index(
            f'ix_{table}_{target}', table, [f'{target}_id', f'{target}_instance_id']
        )

    # === Sync bookkeeping ===
    op.create_table(
        'sync_state',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('stash_instance_id', sa.String(36), nullable=False),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('last_full_sync', sa.String(40), nullable=True),
        sa.Column('last_incremental_sync', sa.String(40), nullable=True),
        _ts('last_full_sync_actual', nullable=True),
        _ts('last_incremental_sync_actual', nullable=True),
        *_counts('last_sync_count'),
        sa.Column('last_sync_duration_ms', sa.Integer, nullable=True),
        sa.Column('last_error', sa.Text, nullable=True),
        *_counts('total_entities'),
        _ts('updated_at'),
        sa.UniqueConstraint('stash_instance_id', 'entity_type', name='uq_sync_state_instance_type'),
    )
    op.create_table(
        'sync_settings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('sync_interval_minutes', sa.Integer, nullable=False, server_default='60'),
        sa.Column(
            'enable_scan_subscription', sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column(
            'enable_plugin_webhook', sa.Boolean, nullable=False, server_default=sa.false()
        ),
        _ts('updated_at'),
    )

    # === Users ===
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('username', sa.String(255), nullable=False, unique=True),
        _ts('created_at'),
    )
    op.create_table(
        'user_stash_instances',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column(
            'instance_id',
            sa.String(36),
            sa.ForeignKey('stash_instances.id', ondelete='CASCADE'),
            nullable=False,
            index=True,
        ),
        _ts('created_at'),
        sa.UniqueConstraint('user_id', 'instance_id', name='uq_user_stash_instance'),
    )
    op.create_index('ix_user_stash_instances_user_id', 'user_stash_instances', ['user_id'])

    op.create_table(
        'user_hidden_entities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
        _ts('hidden_at'),
        sa.UniqueConstraint(
            'user_id', 'entity_type', 'entity_id', 'instance_id', name='uq_user_hidden_entity'
        ),
    )
    op.create_index('ix_user_hidden_entities_user_id', 'user_hidden_entities', ['user_id'])

    op.create_table(
        'user_excluded_entities',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
        sa.Column('reason', sa.String(20), nullable=False),
        _ts('computed_at'),
        sa.UniqueConstraint(
            'user_id', 'entity_type', 'entity_id', 'instance_id', name='uq_user_excluded_entity'
        ),
    )
    op.create_index(
        'ix_user_excluded_user_type', 'user_excluded_entities', ['user_id', 'entity_type']
    )
    op.create_index(
        'ix_user_excluded_type_entity', 'user_excluded_entities', ['entity_type', 'entity_id']
    )

    op.create_table(
        'user_content_restrictions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('mode', sa.String(10), nullable=False, server_default='EXCLUDE'),
        sa.Column('entity_ids', sa.Text, nullable=False, server_default='[]'),
        sa.Column('restrict_empty', sa.Boolean, nullable=False, server_default=sa.false()),
        _ts('created_at'),
        _ts('updated_at'),
        sa.UniqueConstraint('user_id', 'entity_type', name='uq_user_restriction_type'),
    )
    op.create_index(
        'ix_user_content_restrictions_user_id', 'user_content_restrictions', ['user_id']
    )

    op.create_table(
        'user_entity_stats',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
        *_counts('visible_count'),
        _ts('updated_at'),
        sa.UniqueConstraint('user_id', 'entity_type', 'instance_id', name='uq_user_entity_stats'),
    )

    # === Ratings ===
    for kind in RATED:
        table = f'{kind}_ratings'
        op.create_table(
            table,
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            _user_fk(),
            sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
            sa.Column('rating', sa.Integer, nullable=True),
            sa.Column('favorite', sa.Boolean, nullable=False, server_default=sa.false()),
            _ts('created_at'),
            _ts('updated_at'),
            sa.Column(f'{kind}_id', sa.String(64), nullable=False),
            sa.UniqueConstraint('user_id', 'instance_id', f'{kind}_id', name=f'uq_{kind}_rating'),
        )
        op.create_index(f'ix_{table}_user_id', table, ['user_id'])

    # === Watch history and derived stats ===
    op.create_table(
        'watch_history',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
        sa.Column('scene_id', sa.String(64), nullable=False),
        *_counts('play_count'),
        sa.Column('play_duration', sa.Float, nullable=False, server_default='0'),
        *_counts('o_count'),
        sa.Column('o_history', sa.Text, nullable=False, server_default='[]'),
        sa.Column('play_history', sa.Text, nullable=False, server_default='[]'),
        sa.Column('resume_time', sa.Float, nullable=True),
        _ts('last_played_at', nullable=True),
        _ts('created_at'),
        _ts('updated_at'),
        sa.UniqueConstraint('user_id', 'instance_id', 'scene_id', name='uq_watch_history_scene'),
    )
    op.create_index('ix_watch_history_user_id', 'watch_history', ['user_id'])

    for kind in STATS:
        table = f'user_{kind}_stats'
        op.create_table(
            table,
            sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
            _user_fk(),
            sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
            *_counts('o_counter', 'play_count'),
            _ts('last_played_at', nullable=True),
            _ts('last_o_at', nullable=True),
            _ts('updated_at'),
            sa.Column(f'{kind}_id', sa.String(64), nullable=False),
            sa.UniqueConstraint(
                'user_id', 'instance_id', f'{kind}_id', name=f'uq_user_{kind}_stats'
            ),
        )
        op.create_index(f'ix_{table}_user_id', table, ['user_id'])

    op.create_table(
        'user_entity_rankings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column('instance_id', sa.String(36), nullable=False, server_default=''),
        sa.Column('entity_type', sa.String(20), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        *_counts('play_count', 'o_count'),
        sa.Column('play_duration', sa.Float, nullable=False, server_default='0'),
        *_counts('library_presence'),
        sa.Column('engagement_score', sa.Float, nullable=False, server_default='0'),
        sa.Column('engagement_rate', sa.Float, nullable=False, server_default='0'),
        *_counts('percentile_rank', 'rank'),
        _ts('computed_at'),
        sa.UniqueConstraint(
            'user_id', 'instance_id', 'entity_type', 'entity_id', name='uq_user_entity_ranking'
        ),
    )
    op.create_index(
        'ix_user_entity_rankings_user_type', 'user_entity_rankings', ['user_id', 'entity_type']
    )


def downgrade() -> None:
    op.drop_table('user_entity_rankings')
    for kind in reversed(STATS):
        op.drop_table(f'user_{kind}_stats')
    op.drop_table('watch_history')
    for kind in reversed(RATED):
        op.drop_table(f'{kind}_ratings')
    op.drop_table('user_entity_stats')
    op.drop_table('user_content_restrictions')
    op.drop_table('user_excluded_entities')
    op.drop_table('user_hidden_entities')
    op.drop_table('user_stash_instances')
    op.drop_table('users')
    op.drop_table('sync_settings')
    op.drop_table('sync_state')
    for table, _owner, _target in reversed(JUNCTIONS):
        op.drop_table(table)
    for table in (
        'stash_images',
        'stash_galleries',
        'stash_groups',
        'stash_tags',
        'stash_studios',
        'stash_performers',
        'stash_scenes',
    ):
        op.drop_table(table)
    op.drop_table('stash_instances')
