from ciphertoken.main import main

main()
