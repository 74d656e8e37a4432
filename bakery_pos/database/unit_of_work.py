# bakery_pos/database/unit_of_work.py
"""All SQL issued by the POS core, scoped to one asyncpg connection."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from ..models.catalog import Customer, MembershipTier, PriceRef
from ..models.discount import Discount
from ..models.order import CouponDiscount, Order, OrderLine, OrderStatus, PricedLine
from ..models.payment import Payment, PaymentMethod, PaymentStatus

ORDER_UPDATABLE_FIELDS = (
    "employee_id", "customer_id", "note", "subtotal",
    "membership_discount", "final_total", "status",
)

PAYMENT_COLUMNS = """
    p.payment_id, p.order_id, p.payment_method_id, pm.code AS method_code,
    p.amount_paid, p.change_amount, p.status, p.payment_time,
    p.gateway_txn_ref, p.gateway_transaction_no, p.gateway_response_code
"""

class UnitOfWork:
    """Repository methods bound to a connection (and its transaction, if any)"""

    def __init__(self, conn):
        self.conn = conn

    # --- Catalog and collaborators ---

    async def get_price_refs(self, price_ids: Iterable[int]) -> Dict[int, PriceRef]:
        """Resolve price references with product and size names"""
        rows = await self.conn.fetch("""
            SELECT pp.price_id, pp.product_id, p.name AS product_name,
                   s.name AS size_name, pp.price AS unit_price, pp.is_active
            FROM product_prices pp
            JOIN products p ON p.product_id = pp.product_id
            JOIN product_sizes s ON s.size_id = pp.size_id
            WHERE pp.price_id = ANY($1::int[])
        """, list(set(price_ids)))
        return {row['price_id']: PriceRef(**dict(row)) for row in rows}

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        """Customer with its membership tier, if any"""
        row = await self.conn.fetchrow("""
            SELECT c.customer_id, c.full_name, c.phone,
                   m.membership_type_id, m.name AS tier_name, m.discount_value,
                   m.is_active AS tier_active, m.valid_until
            FROM customers c
            LEFT JOIN membership_types m ON m.membership_type_id = c.membership_type_id
            WHERE c.customer_id = $1
        """, customer_id)
        if not row:
            return None

        membership = None
        if row['membership_type_id'] is not None:
            membership = MembershipTier(
                membership_type_id=row['membership_type_id'],
                name=row['tier_name'],
                discount_value=row['discount_value'],
                is_active=row['tier_active'],
                valid_until=row['valid_until']
            )
        return Customer(
            customer_id=row['customer_id'],
            name=row['full_name'],
            phone=row['phone'],
            membership=membership
        )

    async def employee_exists(self, employee_id: int) -> bool:
        return await self.conn.fetchval(
            "SELECT EXISTS (SELECT 1 FROM employees WHERE employee_id = $1)",
            employee_id
        )

    # --- Discounts ---

    async def get_discounts(self, discount_ids: Iterable[int],
                            for_update: bool = False) -> Dict[int, Discount]:
        """Fetch discounts; with ``for_update`` the rows stay locked until commit"""
        query = """
            SELECT *
            FROM discounts
            WHERE discount_id = ANY($1::int[])
            ORDER BY discount_id
        """
        if for_update:
            query += " FOR UPDATE"
        rows = await self.conn.fetch(query, sorted(set(discount_ids)))
        return {row['discount_id']: Discount(**dict(row)) for row in rows}

    async def count_customer_discount_uses(self, discount_id: int, customer_id: int,
                                           exclude_order_id: Optional[int] = None) -> int:
        """Non-cancelled orders of the customer carrying the discount"""
        return await self.conn.fetchval("""
            SELECT COUNT(*)
            FROM order_discounts od
            JOIN orders o ON o.order_id = od.order_id
            WHERE od.discount_id = $1
            AND o.customer_id = $2
            AND o.status IN ('PROCESSING', 'COMPLETED')
            AND ($3::int IS NULL OR o.order_id <> $3)
        """, discount_id, customer_id, exclude_order_id)

    async def increment_discount_uses(self, discount_ids: Iterable[int]):
        ids = list(discount_ids)
        if not ids:
            return
        await self.conn.execute("""
            UPDATE discounts
            SET current_uses = current_uses + 1,
                updated_at = NOW()
            WHERE discount_id = ANY($1::int[])
        """, ids)

    # --- Orders ---

    async def insert_order(self, employee_id: int, customer_id: Optional[int],
                           note: Optional[str], subtotal: Decimal,
                           membership_discount: Decimal, final_total: Decimal,
                           status: OrderStatus = OrderStatus.PROCESSING) -> int:
        return await self.conn.fetchval("""
            INSERT INTO orders (
                employee_id, customer_id, note, status,
                subtotal, membership_discount, final_total, order_time
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
            RETURNING order_id
        """, employee_id, customer_id, note, status.value,
             subtotal, membership_discount, final_total)

    async def insert_order_lines(self, order_id: int, lines: List[PricedLine]):
        await self.conn.executemany("""
            INSERT INTO order_lines (
                order_id, price_id, product_name, size_name,
                unit_price, quantity, option, line_total
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
        """, [
            (order_id, line.price_id, line.product_name, line.size_name,
             line.unit_price, line.quantity, line.option, line.line_total)
            for line in lines
        ])

    async def insert_order_discounts(self, order_id: int, coupons: List[CouponDiscount]):
        await self.conn.executemany("""
            INSERT INTO order_discounts (
                order_id, discount_id, discount_name, discount_amount
            ) VALUES ($1, $2, $3, $4)
        """, [
            (order_id, coupon.discount_id, coupon.name, coupon.amount)
            for coupon in coupons
        ])

    async def delete_order_lines(self, order_id: int):
        await self.conn.execute("DELETE FROM order_lines WHERE order_id = $1", order_id)

    async def delete_order_discounts(self, order_id: int):
        await self.conn.execute("DELETE FROM order_discounts WHERE order_id = $1", order_id)

    async def get_order(self, order_id: int, for_update: bool = False) -> Optional[Order]:
        """Order with its lines and coupon applications"""
        query = "SELECT * FROM orders WHERE order_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self.conn.fetchrow(query, order_id)
        if not row:
            return None

        lines = await self.conn.fetch("""
            SELECT *
            FROM order_lines
            WHERE order_id = $1
            ORDER BY order_line_id
        """, order_id)
        discounts = await self.conn.fetch("""
            SELECT od.discount_id, od.discount_name AS name,
                   od.discount_amount AS amount, d.discount_value AS percentage
            FROM order_discounts od
            LEFT JOIN discounts d ON d.discount_id = od.discount_id
            WHERE od.order_id = $1
            ORDER BY od.applied_at, od.discount_id
        """, order_id)

        return Order(
            **dict(row),
            lines=[OrderLine(**dict(line)) for line in lines],
            discounts=[CouponDiscount(**dict(d)) for d in discounts]
        )

    async def list_orders(self, filters: Dict[str, Any], limit: int,
                          offset: int) -> Tuple[List[Order], int]:
        """Order headers matching the filters, newest first"""
        conditions = []
        params: List[Any] = []

        for column in ("customer_id", "employee_id", "status"):
            value = filters.get(column)
            if value is None:
                continue
            params.append(value.value if isinstance(value, OrderStatus) else value)
            conditions.append(f"{column} = ${len(params)}")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        total = await self.conn.fetchval(f"SELECT COUNT(*) FROM orders {where}", *params)
        rows = await self.conn.fetch(f"""
            SELECT *
            FROM orders
            {where}
            ORDER BY order_id DESC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """, *params, limit, offset)

        return [Order(**dict(row)) for row in rows], total

    async def update_order(self, order_id: int, fields: Dict[str, Any]):
        """Update the given order columns"""
        query_parts = []
        params = []

        for key, value in fields.items():
            if key not in ORDER_UPDATABLE_FIELDS:
                raise ValueError(f"Column {key} cannot be updated")
            params.append(value.value if isinstance(value, OrderStatus) else value)
            query_parts.append(f"{key} = ${len(params)}")

        if not query_parts:
            return

        params.append(order_id)
        await self.conn.execute(f"""
            UPDATE orders
            SET {', '.join(query_parts)}, updated_at = NOW()
            WHERE order_id = ${len(params)}
        """, *params)

    async def set_order_status(self, order_id: int, status: OrderStatus,
                               expected: OrderStatus) -> bool:
        """Move the order to ``status`` only if it is currently ``expected``"""
        result = await self.conn.execute("""
            UPDATE orders
            SET status = $1, updated_at = NOW()
            WHERE order_id = $2 AND status = $3
        """, status.value, order_id, expected.value)
        return result == "UPDATE 1"

    async def delete_order(self, order_id: int) -> bool:
        result = await self.conn.execute("DELETE FROM orders WHERE order_id = $1", order_id)
        return result == "DELETE 1"

    # --- Payments ---

    async def get_payment_method_by_code(self, code: str) -> Optional[PaymentMethod]:
        row = await self.conn.fetchrow(
            "SELECT * FROM payment_methods WHERE code = $1", code
        )
        return PaymentMethod(**dict(row)) if row else None

    async def insert_payment(self, order_id: int, payment_method_id: int,
                             amount_paid: Decimal, change_amount: Decimal,
                             status: PaymentStatus, payment_time: datetime) -> Payment:
        payment_id = await self.conn.fetchval("""
            INSERT INTO payments (
                order_id, payment_method_id, amount_paid,
                change_amount, status, payment_time
            ) VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING payment_id
        """, order_id, payment_method_id, amount_paid,
             change_amount, status.value, payment_time)
        return await self.get_payment(payment_id)

    async def get_gateway_payment(self, order_id: int,
                                  payment_method_id: int) -> Optional[Payment]:
        row = await self.conn.fetchrow(f"""
            SELECT {PAYMENT_COLUMNS}
            FROM payments p
            JOIN payment_methods pm ON pm.payment_method_id = p.payment_method_id
            WHERE p.order_id = $1
            AND p.payment_method_id = $2
            AND p.gateway_txn_ref IS NOT NULL
        """, order_id, payment_method_id)
        return Payment(**dict(row)) if row else None

    async def upsert_gateway_payment(self, order_id: int, payment_method_id: int,
                                     amount_paid: Decimal, status: PaymentStatus,
                                     payment_time: datetime, txn_ref: str,
                                     transaction_no: Optional[str],
                                     response_code: Optional[str]) -> Payment:
        """Insert or update the single gateway payment of an order and method"""
        payment_id = await self.conn.fetchval("""
            INSERT INTO payments (
                order_id, payment_method_id, amount_paid, change_amount,
                status, payment_time, gateway_txn_ref,
                gateway_transaction_no, gateway_response_code
            ) VALUES ($1, $2, $3, 0, $4, $5, $6, $7, $8)
            ON CONFLICT (order_id, payment_method_id)
                WHERE gateway_txn_ref IS NOT NULL
            DO UPDATE SET
                amount_paid = EXCLUDED.amount_paid,
                status = EXCLUDED.status,
                payment_time = EXCLUDED.payment_time,
                gateway_txn_ref = EXCLUDED.gateway_txn_ref,
                gateway_transaction_no = EXCLUDED.gateway_transaction_no,
                gateway_response_code = EXCLUDED.gateway_response_code
            RETURNING payment_id
        """, order_id, payment_method_id, amount_paid, status.value,
             payment_time, txn_ref, transaction_no, response_code)
        return await self.get_payment(payment_id)

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        row = await self.conn.fetchrow(f"""
            SELECT {PAYMENT_COLUMNS}
            FROM payments p
            JOIN payment_methods pm ON pm.payment_method_id = p.payment_method_id
            WHERE p.payment_id = $1
        """, payment_id)
        return Payment(**dict(row)) if row else None

    async def list_payments(self, order_id: Optional[int], limit: int,
                            offset: int) -> Tuple[List[Payment], int]:
        total = await self.conn.fetchval("""
            SELECT COUNT(*)
            FROM payments
            WHERE ($1::int IS NULL OR order_id = $1)
        """, order_id)
        rows = await self.conn.fetch(f"""
            SELECT {PAYMENT_COLUMNS}
            FROM payments p
            JOIN payment_methods pm ON pm.payment_method_id = p.payment_method_id
            WHERE ($1::int IS NULL OR p.order_id = $1)
            ORDER BY p.payment_time DESC, p.payment_id DESC
            LIMIT $2 OFFSET $3
        """, order_id, limit, offset)
        return [Payment(**dict(row)) for row in rows], total
