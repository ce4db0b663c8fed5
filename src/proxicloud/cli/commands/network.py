"""Network helper commands."""

from typing import Annotated

import typer
from rich.table import Table

from proxicloud.cli.output import console, print_error, print_success
from proxicloud.models.sdn_network import (
    calculate_dhcp_range,
    is_valid_cidr,
    parse_dhcp_range,
    validate_gateway_in_subnet,
)

app = typer.Typer(help="Network helper commands")


@app.command("check")
def check_network(
    subnet: Annotated[str, typer.Argument(help="Subnet in CIDR notation")],
    gateway: Annotated[str, typer.Argument(help="Gateway IP inside the subnet")],
):
    """Validate a subnet/gateway pair and show its DHCP range."""
    if not is_valid_cidr(subnet):
        print_error(f"Invalid subnet CIDR: {subnet}")
        raise typer.Exit(1)

    try:
        validate_gateway_in_subnet(subnet, gateway)
        dhcp_range = calculate_dhcp_range(subnet, gateway)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    start_address, end_address = parse_dhcp_range(dhcp_range)

    table = Table(title="Project Network", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Subnet", subnet)
    table.add_row("Gateway", gateway)
    table.add_row("DHCP start", start_address)
    table.add_row("DHCP end", end_address)
    console.print(table)
    print_success("Network configuration is valid.")
