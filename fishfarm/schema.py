SCHEMA_SQL = r"""
-- Farmers supplying fish
CREATE TABLE IF NOT EXISTS farmers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  phone TEXT,
  location TEXT
);

-- Storage locations (cold rooms, freezers, processing areas)
CREATE TABLE IF NOT EXISTS storage_locations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  location_type TEXT NOT NULL DEFAULT 'cold_storage',
  capacity_kg REAL NOT NULL DEFAULT 0,
  current_usage_kg REAL NOT NULL DEFAULT 0,   -- cache, reconciled from stock_records
  status TEXT NOT NULL DEFAULT 'active',      -- active / maintenance / inactive
  temperature_c REAL,
  humidity_pct REAL
);

-- Size class bands (0..10), configured as data
CREATE TABLE IF NOT EXISTS size_class_thresholds (
  class_number INTEGER PRIMARY KEY,
  min_weight_grams REAL NOT NULL,
  max_weight_grams REAL NOT NULL,
  description TEXT,
  is_active INTEGER NOT NULL DEFAULT 1
);

-- Sorting batches (one completed sort of one processing run)
CREATE TABLE IF NOT EXISTS sorting_batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  batch_number TEXT NOT NULL UNIQUE,
  farmer_id INTEGER,
  processing_date TEXT,                  -- ISO date
  status TEXT NOT NULL DEFAULT 'completed',
  notes TEXT,
  created_at TEXT NOT NULL,              -- ISO datetime
  FOREIGN KEY (farmer_id) REFERENCES farmers(id)
);

-- Stock records: one parcel of sorted fish of one size class
CREATE TABLE IF NOT EXISTS stock_records (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sorting_batch_id INTEGER,
  size_class INTEGER NOT NULL CHECK (size_class BETWEEN 0 AND 10),
  total_pieces INTEGER NOT NULL CHECK (total_pieces >= 0),
  total_weight_grams REAL NOT NULL CHECK (total_weight_grams >= 0),
  storage_location_id INTEGER,           -- no FK: may reference a removed location
  status TEXT NOT NULL DEFAULT 'available',   -- available / disposed
  transfer_id INTEGER,
  transfer_source_storage_id INTEGER,
  created_at TEXT NOT NULL,
  FOREIGN KEY (sorting_batch_id) REFERENCES sorting_batches(id)
);

CREATE INDEX IF NOT EXISTS ix_stock_location ON stock_records(storage_location_id, status);

-- Disposal reasons (reference data)
CREATE TABLE IF NOT EXISTS disposal_reasons (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  description TEXT,
  is_active INTEGER NOT NULL DEFAULT 1
);

-- Disposal header
CREATE TABLE IF NOT EXISTS disposal_records (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  disposal_number TEXT NOT NULL UNIQUE,
  disposal_date TEXT,                    -- set on completion
  disposal_reason_id INTEGER NOT NULL,
  total_weight_kg REAL NOT NULL DEFAULT 0,
  total_pieces INTEGER NOT NULL DEFAULT 0,
  disposal_method TEXT NOT NULL,         -- waste / compost / donation / return_to_farmer
  disposal_location TEXT,
  disposal_cost REAL NOT NULL DEFAULT 0,
  notes TEXT,
  status TEXT NOT NULL DEFAULT 'pending',  -- pending / approved / completed / cancelled
  disposed_by TEXT,
  approved_by TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY (disposal_reason_id) REFERENCES disposal_reasons(id)
);

-- Disposal lines: immutable snapshot of the stock at disposal time
CREATE TABLE IF NOT EXISTS disposal_items (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  disposal_record_id INTEGER NOT NULL,
  stock_record_id INTEGER NOT NULL,
  size_class INTEGER NOT NULL,
  quantity INTEGER NOT NULL,
  weight_kg REAL NOT NULL,
  batch_number TEXT,
  storage_location_name TEXT,
  farmer_name TEXT,
  processing_date TEXT,
  quality_notes TEXT,
  disposal_reason TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY (disposal_record_id) REFERENCES disposal_records(id) ON DELETE CASCADE,
  FOREIGN KEY (stock_record_id) REFERENCES stock_records(id)
);

-- Transfers between storage locations (one row per size class)
CREATE TABLE IF NOT EXISTS transfers (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  from_storage_location_id INTEGER NOT NULL,
  to_storage_location_id INTEGER NOT NULL,
  size_class INTEGER NOT NULL CHECK (size_class BETWEEN 0 AND 10),
  quantity INTEGER NOT NULL,
  weight_kg REAL NOT NULL,
  notes TEXT NOT NULL DEFAULT '',
  status TEXT NOT NULL DEFAULT 'pending',  -- pending / approved / declined / completed
  requested_by TEXT,
  approved_by TEXT,
  created_at TEXT NOT NULL,
  approved_at TEXT,
  completed_at TEXT,
  FOREIGN KEY (from_storage_location_id) REFERENCES storage_locations(id),
  FOREIGN KEY (to_storage_location_id) REFERENCES storage_locations(id)
);

-- Outlet orders awaiting dispatch
CREATE TABLE IF NOT EXISTS outlet_orders (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  order_number TEXT NOT NULL UNIQUE,
  outlet_name TEXT NOT NULL,
  size_quantities TEXT NOT NULL DEFAULT '{}',  -- JSON: size -> pieces
  use_any_size INTEGER NOT NULL DEFAULT 0,
  total_value REAL NOT NULL DEFAULT 0,
  status TEXT NOT NULL DEFAULT 'pending',
  dispatch_date TEXT,
  notes TEXT,
  created_at TEXT NOT NULL
);

-- Dispatch records: immutable pick snapshot
CREATE TABLE IF NOT EXISTS dispatch_records (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  outlet_order_id INTEGER NOT NULL,
  fish_ids TEXT NOT NULL,                -- JSON list of stock record ids
  destination TEXT,
  dispatch_date TEXT NOT NULL,
  total_weight REAL NOT NULL,            -- kg
  total_pieces INTEGER NOT NULL,
  size_breakdown TEXT NOT NULL,          -- JSON: size -> pieces
  total_value REAL NOT NULL DEFAULT 0,
  status TEXT NOT NULL DEFAULT 'scheduled',
  assigned_driver TEXT,
  picking_date TEXT,
  picking_time TEXT,
  dispatched_by TEXT,
  notes TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY (outlet_order_id) REFERENCES outlet_orders(id)
);
"""
