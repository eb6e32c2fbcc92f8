from manage_sql_database.manage_sql import command_line_main

command_line_main()
