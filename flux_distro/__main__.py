"""Run the flux-distro command line tool."""

from flux_distro.tool.flux_distro import main

main()
