from archcost.cli.main import app

app(prog_name="archcost")
