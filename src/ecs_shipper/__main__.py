from ecs_shipper.cli import main

if __name__ == "__main__":
    main()
