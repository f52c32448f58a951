"""Create users, books, genres and book_genres tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'READER', name='userrole'), nullable=False),
        sa.Column('mailing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('hashed_password', sa.String(), nullable=False),
        sa.Column('refresh_token', sa.String(), nullable=True),
        sa.Column('refresh_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_refresh_token', 'users', ['refresh_token'])

    op.create_table(
        'genres',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
    )
    op.create_index('ix_genres_name', 'genres', ['name'], unique=True)

    op.create_table(
        'books',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('author', sa.String(), nullable=False),
        sa.Column('published_year', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_books_title', 'books', ['title'])

    op.create_table(
        'book_genres',
        sa.Column('book_id', sa.Integer(), sa.ForeignKey('books.id'), primary_key=True),
        sa.Column('genre_id', sa.Integer(), sa.ForeignKey('genres.id'), primary_key=True),
    )

    # Similarity search indexes
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('CREATE EXTENSION IF NOT EXISTS pg_trgm')
        op.execute('CREATE INDEX idx_books_title_trgm ON books USING GIN (title gin_trgm_ops)')
        op.execute('CREATE INDEX idx_books_description_trgm ON books USING GIN (description gin_trgm_ops)')


def downgrade() -> None:
    if op.get_bind().dialect.name == 'postgresql':
        op.execute('DROP INDEX IF EXISTS idx_books_description_trgm')
        op.execute('DROP INDEX IF EXISTS idx_books_title_trgm')
    op.drop_table('book_genres')
    op.drop_index('ix_books_title', table_name='books')
    op.drop_table('books')
    op.drop_index('ix_genres_name', table_name='genres')
    op.drop_table('genres')
    op.drop_index('ix_users_refresh_token', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    sa.Enum(name='userrole').drop(op.get_bind(), checkfirst=True)
