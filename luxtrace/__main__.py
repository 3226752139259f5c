from luxtrace.cli import main

raise SystemExit(main())
