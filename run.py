
from service_discovery.bootstrap import main

if __name__ == "__main__":
    main()
