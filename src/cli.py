"""
Command-line interface for the Farm to Door marketplace.

This script wires ``FarmToDoorApp`` into an interactive menu loop.  Which
menu is shown depends on the role of the logged-in user; every action goes
through the application services, so the CLI itself holds no business
rules.
"""

import sys
from typing import Callable, Optional

from app import FarmToDoorApp
from auth import Session
from config import Settings
from logging_config import configure_logging
from models import CATEGORIES, UNITS


def _read_int(prompt: str) -> Optional[int]:
    try:
        return int(input(prompt).strip())
    except ValueError:
        print("Please enter a valid number.")
        return None


def _print_products(app: FarmToDoorApp, products) -> None:
    if not products:
        print("No products found.")
        return
    for p in products:
        organic = " [organic]" if p.is_organic else ""
        print(f"{p.id}. {p.name}{organic} - {app.settings.format_currency(p.price)} {p.unit} "
              f"(Stock: {p.stock}) by {p.farmer_name}")


def _print_orders(app: FarmToDoorApp, orders) -> None:
    if not orders:
        print("No orders yet.")
        return
    for o in orders:
        items = ", ".join(f"{i.name} x{i.quantity}" for i in o.items)
        print(f"#{o.id} [{o.status}] {o.order_date} {items} - {app.settings.format_currency(o.amount)}")


# ---------------------------------------------------------------------------
# Customer
# ---------------------------------------------------------------------------


def _checkout(app: FarmToDoorApp, session: Session) -> None:
    app.checkout.reset()
    ok, msg = app.checkout.begin(session)
    if not ok:
        print(msg)
        return
    s = app.checkout.summary
    fmt = app.settings.format_currency
    print("\nOrder Summary:")
    for line in s.lines:
        print(f"  {line.name} x {line.quantity} = {fmt(line.line_total)}")
    print(f"  Subtotal: {fmt(s.subtotal)}")
    print(f"  Tax: {fmt(s.tax)}")
    print(f"  Delivery Fee: {fmt(s.delivery_fee)}")
    print(f"  Total: {fmt(s.total)}")
    print(f"  Deliver to: {s.delivery_address} (expected {s.delivery_date})")
    if input("Confirm order? (y/n): ").strip().lower() == "y":
        ok, msg = app.checkout.confirm()
        print(msg)
    else:
        app.checkout.cancel()
        print("Checkout cancelled.")


def customer_menu(app: FarmToDoorApp, session: Session) -> bool:
    """Run one customer menu round; return False on logout."""
    app.customer.deliver_pending_receipts(session)
    print(f"\n-- Customer: {session.user.name} (cart: {app.cart.get_item_count()} items) --")
    print("1. Browse Products")
    print("2. Add Product to Cart")
    print("3. View Cart")
    print("4. Checkout")
    print("5. Order Now (single product)")
    print("6. My Orders")
    print("7. Rate a Delivered Order")
    print("8. Update Profile")
    print("0. Logout")
    choice = input("Select an option: ").strip()
    if choice == "1":
        search = input("Search (blank for all): ").strip()
        category = input(f"Category {CATEGORIES} (blank for all): ").strip() or None
        organic = input("Organic only? (y/n): ").strip().lower() == "y"
        _print_products(app, app.customer.browse_products(search, category, organic))
    elif choice == "2":
        pid = _read_int("Enter Product ID: ")
        qty = _read_int("Enter quantity: ")
        if pid is not None and qty is not None:
            ok, msg = app.cart.add_item(pid, qty)
            print(msg)
    elif choice == "3":
        if app.cart.is_empty():
            print("Cart is empty.")
        else:
            for line in app.cart.lines:
                print(f"{line.product_id}. {line.name} x {line.quantity} = "
                      f"{app.settings.format_currency(line.line_total)}")
            print(f"Total: {app.settings.format_currency(app.cart.get_total())}")
            pid = _read_int("Product ID to change (0 to go back): ")
            if pid:
                qty = _read_int("New quantity (0 removes): ")
                if qty is not None:
                    ok, msg = app.cart.update_quantity(pid, qty)
                    print(msg)
    elif choice == "4":
        _checkout(app, session)
    elif choice == "5":
        pid = _read_int("Enter Product ID: ")
        qty = _read_int("Enter quantity: ")
        if pid is None or qty is None:
            return True
        name = input(f"Delivery name [{session.user.name}]: ").strip() or session.user.name
        address = input(f"Delivery address [{session.user.address or ''}]: ").strip() or session.user.address
        phone = input(f"Delivery phone [{session.user.phone or ''}]: ").strip() or session.user.phone
        method = input("Payment method (cod/upi/card) [cod]: ").strip() or "cod"
        ok, msg = app.checkout.place_direct_order(session, pid, qty, name, address, phone, method)
        print(msg)
        if ok:
            app.outbox.run_pending()
            if app.chat.links:
                print(f"Share your order: {app.chat.links[-1]}")
    elif choice == "6":
        _print_orders(app, app.customer.my_orders(session))
    elif choice == "7":
        order_id = input("Order ID: ").strip()
        rating = _read_int("Rating (1-5): ")
        if rating is not None:
            comment = input("Comment: ").strip()
            ok, msg = app.submit_rating(session, order_id, rating, comment)
            print(msg)
    elif choice == "8":
        address = input("Address: ").strip()
        phone = input("Phone: ").strip()
        fields = {k: v for k, v in (("address", address), ("phone", phone)) if v}
        ok, msg = app.auth.update_profile(session, **fields)
        print(msg)
    elif choice == "0":
        return False
    else:
        print("Invalid option. Please try again.")
    return True


# ---------------------------------------------------------------------------
# Farmer
# ---------------------------------------------------------------------------


def _product_form(existing: bool) -> Optional[dict]:
    fields: dict = {}
    name = input("Product name: ").strip()
    if name or not existing:
        fields["name"] = name
    try:
        price = input("Price: ").strip()
        if price or not existing:
            fields["price"] = float(price)
        stock = input("Stock: ").strip()
        if stock or not existing:
            fields["stock"] = int(stock)
        threshold = input("Low stock threshold [10]: ").strip()
        if threshold:
            fields["low_stock_threshold"] = int(threshold)
    except ValueError:
        print("Please enter valid numeric values for price and stock.")
        return None
    unit = input(f"Unit {UNITS}: ").strip()
    if unit or not existing:
        fields["unit"] = unit
    category = input(f"Category {CATEGORIES}: ").strip()
    if category or not existing:
        fields["category"] = category
    description = input("Description: ").strip()
    if description:
        fields["description"] = description
    organic = input("Organic? (y/n, blank to keep): ").strip().lower()
    if organic:
        fields["is_organic"] = organic == "y"
    return fields


def farmer_menu(app: FarmToDoorApp, session: Session) -> bool:
    print(f"\n-- Farmer: {session.user.display_name} --")
    print("1. Dashboard")
    print("2. My Products")
    print("3. Add Product")
    print("4. Edit Product")
    print("5. Delete Product")
    print("6. Orders")
    print("7. Update Order Status")
    print("8. Analytics")
    print("0. Logout")
    choice = input("Select an option: ").strip()
    fmt = app.settings.format_currency
    if choice == "1":
        o = app.farmer.overview(session)
        print(f"Products: {o.product_count}  Orders: {o.order_count}  "
              f"Pending: {o.pending_orders}  Revenue: {fmt(o.revenue)}")
        for alert in o.alerts:
            print(f"! {alert.product_name}: only {alert.current_stock} units remaining "
                  f"(threshold: {alert.threshold})")
    elif choice == "2":
        _print_products(app, app.farmer.my_products(session))
    elif choice == "3":
        fields = _product_form(existing=False)
        if fields is not None:
            ok, msg = app.farmer.add_product(session, **fields)
            print(msg)
    elif choice == "4":
        pid = _read_int("Product ID: ")
        fields = _product_form(existing=True) if pid is not None else None
        if fields is not None:
            ok, msg = app.farmer.edit_product(session, pid, **fields)
            print(msg)
    elif choice == "5":
        pid = _read_int("Product ID: ")
        if pid is not None:
            ok, msg = app.farmer.delete_product(session, pid)
            print(msg)
    elif choice == "6":
        _print_orders(app, app.farmer.orders(session))
    elif choice == "7":
        order_id = input("Order ID: ").strip()
        status = input("New status (pending/processing/delivered): ").strip()
        ok, msg = app.farmer.update_order_status(session, order_id, status)
        print(msg)
    elif choice == "8":
        a = app.farmer.analytics(session)
        print(f"Revenue: {fmt(a.revenue)}  Average order: {fmt(a.average_order_value)}")
        for month, total in a.monthly_sales.items():
            print(f"  {month}: {fmt(total)}")
        for name, qty in a.product_quantities.items():
            print(f"  {name}: {qty} sold")
    elif choice == "0":
        return False
    else:
        print("Invalid option. Please try again.")
    return True


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


def admin_menu(app: FarmToDoorApp, session: Session) -> bool:
    print("\n-- Admin --")
    print("1. Overview")
    print("2. Customers")
    print("3. Farmers")
    print("4. Products")
    print("5. Orders")
    print("6. Analytics")
    print("7. Remove Farmer")
    print("8. Restore Farmer")
    print("9. Remove Product")
    print("0. Logout")
    choice = input("Select an option: ").strip()
    fmt = app.settings.format_currency
    if choice == "1":
        o = app.admin.overview(session)
        print(f"Customers: {o.customer_count}  Active farmers: {o.active_farmers}  "
              f"Products: {o.product_count}  Orders: {o.order_count}  Revenue: {fmt(o.revenue)}")
    elif choice == "2":
        for u in app.admin.users(session):
            print(f"{u.id}. {u.name} <{u.email}> joined {u.joined_date}")
    elif choice == "3":
        for f in app.admin.farmers(session):
            state = "Active" if f.active else "Removed"
            print(f"{f.id}. {f.display_name} ({f.name}) rating {f.rating or 0:.1f} [{state}]")
    elif choice == "4":
        _print_products(app, app.admin.products(session))
    elif choice == "5":
        _print_orders(app, app.admin.orders(session))
    elif choice == "6":
        a = app.admin.analytics(session)
        print(f"Revenue: {fmt(a.revenue)}  Average order: {fmt(a.average_order_value)}")
        for farm, total in a.farmer_performance.items():
            print(f"  {farm}: {fmt(total)}")
    elif choice in ("7", "8", "9"):
        target = _read_int("ID: ")
        if target is not None:
            action: Callable = {
                "7": app.admin.remove_farmer,
                "8": app.admin.restore_farmer,
                "9": app.admin.remove_product,
            }[choice]
            ok, msg = action(session, target)
            print(msg)
    elif choice == "0":
        return False
    else:
        print("Invalid option. Please try again.")
    return True


ROLE_MENUS = {"user": customer_menu, "farmer": farmer_menu, "admin": admin_menu}


def interactive_cli(app: Optional[FarmToDoorApp] = None) -> None:
    """Provide a simple command-line interface to interact with the marketplace."""
    app = app or FarmToDoorApp()

    def print_menu() -> None:
        print("\n-- Farm to Door --")
        print("1. Login")
        print("2. Register")
        print("3. Browse Products")
        print("0. Exit")

    while True:
        session = app.auth.current_session()
        if session is not None:
            if not ROLE_MENUS[session.role](app, session):
                app.auth.logout()
                app.checkout.reset()
                print("Logged out.")
            app.outbox.run_pending()
            continue
        print_menu()
        choice = input("Select an option: ").strip()
        if choice == "1":
            email = input("Email: ").strip()
            password = input("Password: ").strip()
            role = input("Role (user/farmer/admin): ").strip() or "user"
            session = app.auth.login(email, password, role)
            print(f"Welcome, {session.user.name}!" if session else "Invalid credentials.")
        elif choice == "2":
            name = input("Name: ").strip()
            email = input("Email: ").strip()
            password = input("Password: ").strip()
            role = input("Role (user/farmer): ").strip() or "user"
            profile = {}
            if role == "farmer":
                profile["farm_name"] = input("Farm name: ").strip() or None
                profile["location"] = input("Location: ").strip() or None
            elif role == "user":
                profile["address"] = input("Address: ").strip() or None
            ok, msg = app.auth.register(name, email, password, role, **profile)
            print(msg)
        elif choice == "3":
            _print_products(app, app.customer.browse_products())
        elif choice == "0":
            print("Exiting application.")
            break
        else:
            print("Invalid option. Please try again.")


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_dir, settings.log_level)
    with FarmToDoorApp(settings) as app:
        app.start_background()
        interactive_cli(app)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nInterrupted by user. Exiting.")
        sys.exit(0)
