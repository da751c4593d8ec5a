from sshmesh.cli import main

raise SystemExit(main())
