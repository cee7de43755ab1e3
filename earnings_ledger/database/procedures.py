"""Server-side ledger routines installed on PostgreSQL.

Each routine performs its increment and its log insert in one statement-level
transaction, so either both land or neither does.
"""

CREDIT_SELLER_WALLET = """
CREATE OR REPLACE FUNCTION credit_seller_wallet(
    p_seller_id TEXT,
    p_amount NUMERIC,
    p_order_id UUID,
    p_order_item_id UUID,
    p_description TEXT
) RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
DECLARE
    v_wallet_id UUID;
BEGIN
    UPDATE seller_wallets
       SET balance = balance + p_amount,
           total_earnings = total_earnings + p_amount,
           updated_at = now()
     WHERE seller_id = p_seller_id
    RETURNING id INTO v_wallet_id;

    IF v_wallet_id IS NULL THEN
        RETURN FALSE;
    END IF;

    INSERT INTO wallet_transactions (
        id, wallet_id, type, amount, status, order_id, order_item_id, description, created_at
    ) VALUES (
        gen_random_uuid(), v_wallet_id, 'sale', p_amount, 'completed',
        p_order_id, p_order_item_id, p_description, now()
    );
    RETURN TRUE;
END;
$$;
"""

INCREMENT_SELLER_SALES = """
CREATE OR REPLACE FUNCTION increment_seller_sales(
    p_seller_id TEXT,
    p_amount NUMERIC
) RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
BEGIN
    UPDATE sellers
       SET sales_total = sales_total + p_amount,
           updated_at = now()
     WHERE id = p_seller_id;
    RETURN FOUND;
END;
$$;
"""

ALL_PROCEDURES = (CREDIT_SELLER_WALLET, INCREMENT_SELLER_SALES)
