"""Virtual-host routing, HTTP reverse proxying and HTTPS host sniffing."""