"""Classification of probe replies into service names with a confidence."""