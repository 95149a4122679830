"""
BAC estimate from the command line. Run from project root: python -m bartab.main
Example: python -m bartab.main --weight-lb 150 --drink ale --drink vodka --hours-ago 1
"""

import argparse
import sys
from datetime import timedelta

from bartab import calculations
from bartab.menu import MENU, get_item
from bartab.models import Drink
from bartab.time_utils import utcnow


def main(argv=None):
    parser = argparse.ArgumentParser(description="Estimate BAC for a round of drinks from the bar menu")
    parser.add_argument("--weight-lb", type=float, default=160.0, help="Body weight (lb)")
    parser.add_argument("--female", action="store_true", help="Use the female distribution ratio")
    parser.add_argument("--drink", action="append", default=[], metavar="MENU_ID", help="Menu id; repeat per drink")
    parser.add_argument("--hours-ago", type=float, default=0.0, help="When the first drink was ordered")
    parser.add_argument("--menu", action="store_true", help="List menu ids and exit")
    args = parser.parse_args(argv)

    if args.menu:
        for item in MENU:
            print(f"{item.id:16} {item.name} ({item.volume_ml:g} mL, {item.abv:g}%)")
        return 0

    now = utcnow()
    first_at = now - timedelta(hours=max(0.0, args.hours_ago))
    drinks = []
    for i, menu_id in enumerate(args.drink, start=1):
        item = get_item(menu_id)
        if item is None:
            print(f"Unknown menu id: {menu_id} (use --menu)", file=sys.stderr)
            return 2
        ordered_at = first_at if i == 1 else now
        drinks.append(Drink(i, 0, item.name, item.volume_ml, item.abv, ordered_at))

    sex = "female" if args.female else "male"
    bac = calculations.estimate_bac(drinks, calculations.lb_to_kg(args.weight_lb), sex, now=now)
    print(f"Weight: {args.weight_lb:g} lb ({sex}), drinks: {len(drinks)}")
    print(f"Estimated BAC: {calculations.format_bac(bac)} ({calculations.risk_level(bac)})")
    print(f"Hours until sober: {calculations.hours_until_sober(bac)}h")
    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
