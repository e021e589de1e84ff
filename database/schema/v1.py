"""Schema v1 - Initial marketplace schema.

This version includes tables for:
- Listings (fixed price, English and Dutch auctions)
- Bids and offers
- Sales with fee breakdown and transfer tracking
- Stored activity events
- Asset ownership of record
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False, 'default': "'USDC'"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'starting_price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'reserve_price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'buy_now_price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'ending_price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'price_drop_interval', 'type': 'INT4'},
                {'name': 'ends_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'collection_id', 'type': 'TEXT'},
                {'name': 'royalty_bps', 'type': 'INT4', 'nullable': False, 'default': '0'},
                {'name': 'creator_address', 'type': 'TEXT'},
                {'name': 'name', 'type': 'TEXT'},
                {'name': 'image', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'closed_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'favorited_by', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                {'name': 'version', 'type': 'INT8', 'nullable': False, 'default': '0'}
            ],
            'indexes': [
                {'name': 'idx_listings_seller', 'columns': ['seller_address']},
                {'name': 'idx_listings_status', 'columns': ['status']},
                {'name': 'idx_listings_collection', 'columns': ['collection_id']},
                {
                    'name': 'idx_listings_active_asset',
                    'columns': ['asset_id'],
                    'unique': True,
                    'where': "status = 'active'"
                }
            ]
        },
        {
            'name': 'bids',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'listing_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'bidder_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False},
                {'name': 'placed_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'bidder_name', 'type': 'TEXT'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_bids_listing', 'columns': ['listing_id']},
                {'name': 'idx_bids_bidder', 'columns': ['bidder_address']}
            ]
        },
        {
            'name': 'offers',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'amount', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'open'"},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'buyer_name', 'type': 'TEXT'}
            ],
            'indexes': [
                {'name': 'idx_offers_asset', 'columns': ['asset_id']},
                {'name': 'idx_offers_buyer', 'columns': ['buyer_address']}
            ]
        },
        {
            'name': 'sales',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'listing_id', 'type': 'TEXT'},
                {'name': 'offer_id', 'type': 'TEXT'},
                {'name': 'bid_id', 'type': 'TEXT'},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'sale_price', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'currency', 'type': 'TEXT', 'nullable': False},
                {'name': 'collection_id', 'type': 'TEXT'},
                {'name': 'creator_address', 'type': 'TEXT'},
                {'name': 'royalty_bps', 'type': 'INT4', 'nullable': False},
                {'name': 'royalty_amount', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'platform_fee', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'seller_proceeds', 'type': 'NUMERIC(38, 8)', 'nullable': False},
                {'name': 'settled_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False},
                {'name': 'transfer_signature', 'type': 'TEXT'},
                {'name': 'transfer_attempts', 'type': 'INT4', 'nullable': False, 'default': '0'},
                {'name': 'transfer_error', 'type': 'TEXT'},
                {'name': 'last_transfer_attempt', 'type': 'TIMESTAMPTZ'}
            ],
            'indexes': [
                {'name': 'idx_sales_asset', 'columns': ['asset_id']},
                {'name': 'idx_sales_status', 'columns': ['status']},
                {'name': 'idx_sales_listing', 'columns': ['listing_id'], 'unique': True,
                 'where': 'listing_id IS NOT NULL'}
            ]
        },
        {
            'name': 'activities',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'asset_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'collection_id', 'type': 'TEXT'},
                {'name': 'listing_id', 'type': 'TEXT'},
                {'name': 'from_address', 'type': 'TEXT'},
                {'name': 'to_address', 'type': 'TEXT'},
                {'name': 'price', 'type': 'NUMERIC(38, 8)'},
                {'name': 'currency', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'indexes': [
                {'name': 'idx_activities_asset', 'columns': ['asset_id']},
                {'name': 'idx_activities_created', 'columns': ['created_at']}
            ]
        },
        {
            'name': 'asset_owners',
            'columns': [
                {'name': 'asset_id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'owner_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ]
        }
    ]
}
