"""Database schema and initialization."""
from cardroom.db.connection import db
from cardroom.utils.logger import get_logger

logger = get_logger(__name__)

SCHEMA = """
-- Patrons and staff
CREATE TABLE IF NOT EXISTS patrons (
    id TEXT PRIMARY KEY,
    poker_name VARCHAR(50) NOT NULL,
    email VARCHAR(255) NOT NULL,
    role VARCHAR(20) NOT NULL DEFAULT 'patron',
    approved BOOLEAN NOT NULL DEFAULT FALSE,
    bank_chips INTEGER NOT NULL DEFAULT 0 CHECK (bank_chips >= 0),
    chips_in_play INTEGER NOT NULL DEFAULT 0 CHECK (chips_in_play >= 0),
    bill INTEGER NOT NULL DEFAULT 0 CHECK (bill >= 0),
    is_checked_in BOOLEAN NOT NULL DEFAULT FALSE,
    current_table_id TEXT,
    current_seat_number INTEGER,
    pending_settlement JSONB,
    active_game_session_id TEXT,
    password_hash VARCHAR(255),
    checked_in_at TIMESTAMPTZ,
    checked_out_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_patrons_email ON patrons(LOWER(email));

-- Floor tables and their seats
CREATE TABLE IF NOT EXISTS tables (
    id TEXT PRIMARY KEY,
    name VARCHAR(100) NOT NULL,
    max_seats INTEGER NOT NULL CHECK (max_seats > 0),
    status VARCHAR(20) NOT NULL DEFAULT 'active',
    game_type VARCHAR(50) NOT NULL,
    blinds_or_rate VARCHAR(50) NOT NULL DEFAULT '',
    game_template_id TEXT,
    min_buy_in INTEGER NOT NULL DEFAULT 0,
    max_buy_in INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS seats (
    table_id TEXT NOT NULL REFERENCES tables(id) ON DELETE CASCADE,
    seat_number INTEGER NOT NULL,
    occupant_id TEXT REFERENCES patrons(id),
    occupant_name VARCHAR(50),
    status VARCHAR(20) NOT NULL DEFAULT 'empty',
    occupied_at TIMESTAMPTZ,
    current_stack INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (table_id, seat_number)
);

-- A patron occupies at most one seat in the venue
CREATE UNIQUE INDEX IF NOT EXISTS idx_seats_occupant
    ON seats(occupant_id) WHERE occupant_id IS NOT NULL;

-- Orders (drinks and chip purchases)
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    patron_id TEXT NOT NULL REFERENCES patrons(id),
    items JSONB NOT NULL,
    total_price INTEGER NOT NULL,
    status VARCHAR(40) NOT NULL,
    payment_details JSONB NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    ordered_at TIMESTAMPTZ NOT NULL,
    admin_processed_at TIMESTAMPTZ,
    admin_delivered_at TIMESTAMPTZ,
    customer_confirmed_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ,
    cancelled_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_orders_patron ON orders(patron_id);

CREATE TABLE IF NOT EXISTS withdrawal_requests (
    id TEXT PRIMARY KEY,
    patron_id TEXT NOT NULL REFERENCES patrons(id),
    requested_amount INTEGER NOT NULL CHECK (requested_amount > 0),
    status VARCHAR(40) NOT NULL,
    requested_at TIMESTAMPTZ NOT NULL,
    admin_processed_at TIMESTAMPTZ,
    admin_delivered_at TIMESTAMPTZ,
    customer_confirmed_at TIMESTAMPTZ,
    processed_by TEXT,
    notes TEXT NOT NULL DEFAULT ''
);

CREATE INDEX IF NOT EXISTS idx_withdrawals_patron ON withdrawal_requests(patron_id);

-- Catalog
CREATE TABLE IF NOT EXISTS game_templates (
    id TEXT PRIMARY KEY,
    template_name VARCHAR(100) NOT NULL,
    game_type VARCHAR(50) NOT NULL,
    blinds_or_rate VARCHAR(50) NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    min_players INTEGER NOT NULL DEFAULT 2,
    max_players INTEGER NOT NULL DEFAULT 9,
    estimated_duration_minutes INTEGER NOT NULL DEFAULT 0,
    notes_for_user TEXT NOT NULL DEFAULT '',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    sort_order INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS chip_options (
    id TEXT PRIMARY KEY,
    name VARCHAR(100) NOT NULL,
    chips_amount INTEGER NOT NULL CHECK (chips_amount > 0),
    price_yen INTEGER NOT NULL CHECK (price_yen >= 0),
    is_available BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS menu_items (
    id TEXT PRIMARY KEY,
    name VARCHAR(100) NOT NULL,
    price INTEGER NOT NULL CHECK (price >= 0),
    category VARCHAR(50) NOT NULL DEFAULT 'drink',
    is_available BOOLEAN NOT NULL DEFAULT TRUE
);

CREATE TABLE IF NOT EXISTS announcements (
    id TEXT PRIMARY KEY,
    title VARCHAR(200) NOT NULL,
    text TEXT NOT NULL DEFAULT '',
    image_url TEXT,
    link TEXT,
    is_published BOOLEAN NOT NULL DEFAULT FALSE,
    sort_order INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_announcements_published ON announcements(is_published, sort_order);

CREATE TABLE IF NOT EXISTS waiting_list_entries (
    id TEXT PRIMARY KEY,
    patron_id TEXT NOT NULL REFERENCES patrons(id),
    poker_name VARCHAR(50) NOT NULL,
    game_template_id TEXT NOT NULL,
    status VARCHAR(40) NOT NULL,
    requested_at TIMESTAMPTZ NOT NULL,
    notes_for_staff TEXT NOT NULL DEFAULT '',
    admin_notes TEXT NOT NULL DEFAULT '',
    call_count INTEGER NOT NULL DEFAULT 0,
    called_at TIMESTAMPTZ,
    confirmed_at TIMESTAMPTZ,
    seated_at TIMESTAMPTZ,
    cancelled_at TIMESTAMPTZ
);

-- At most one open entry per (patron, game template)
CREATE UNIQUE INDEX IF NOT EXISTS idx_waitlist_open
    ON waiting_list_entries(patron_id, game_template_id)
    WHERE status IN ('waiting', 'called', 'confirmed');

CREATE INDEX IF NOT EXISTS idx_waitlist_template
    ON waiting_list_entries(game_template_id, requested_at);

-- Play sessions
CREATE TABLE IF NOT EXISTS game_sessions (
    id TEXT PRIMARY KEY,
    patron_id TEXT NOT NULL REFERENCES patrons(id),
    table_id TEXT NOT NULL,
    table_name VARCHAR(100) NOT NULL,
    seat_number INTEGER NOT NULL,
    game_type VARCHAR(50) NOT NULL,
    rate VARCHAR(50) NOT NULL DEFAULT '',
    started_at TIMESTAMPTZ NOT NULL,
    ended_at TIMESTAMPTZ,
    chips_in INTEGER NOT NULL DEFAULT 0,
    additional_chips_in INTEGER NOT NULL DEFAULT 0,
    chips_out INTEGER,
    profit INTEGER,
    duration_minutes INTEGER,
    play_fee INTEGER NOT NULL DEFAULT 0,
    play_fee_applied BOOLEAN NOT NULL DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS idx_game_sessions_patron ON game_sessions(patron_id);

-- Chip journal (append-only)
CREATE TABLE IF NOT EXISTS chip_transactions (
    id TEXT PRIMARY KEY,
    patron_id TEXT NOT NULL REFERENCES patrons(id),
    type VARCHAR(30) NOT NULL,
    bank_delta INTEGER NOT NULL DEFAULT 0,
    in_play_delta INTEGER NOT NULL DEFAULT 0,
    bill_delta INTEGER NOT NULL DEFAULT 0,
    reference_id TEXT,
    actor_id TEXT,
    note TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_chip_transactions_patron ON chip_transactions(patron_id);

-- Update trigger for patrons.updated_at
CREATE OR REPLACE FUNCTION update_updated_at()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS patrons_updated_at ON patrons;
CREATE TRIGGER patrons_updated_at
    BEFORE UPDATE ON patrons
    FOR EACH ROW
    EXECUTE FUNCTION update_updated_at();
"""


async def init_db() -> None:
    """Initialize database schema."""
    logger.info("Initializing database schema...")
    await db.execute(SCHEMA)
    logger.info("Database schema initialized")
